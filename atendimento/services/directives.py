"""Action directives embedded in free text: `@keyword:value`.

Agents and operators write directives inline ("Obrigado @tag:vip"). They are
internal instructions: extraction returns them as typed values plus the text
with every directive removed, which is the only part a customer ever sees.
Anything that does not parse stays in the text untouched.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional


class DirectiveKind(str, Enum):
    RENAME = "nome"
    TAG = "tag"
    STAGE = "etapa"
    TRANSFER_TO_HUMAN = "transferir_humano"
    TRANSFER_TO_AGENT = "transferir_agente"
    SOURCE = "fonte"
    NOTIFY = "notificar"
    ASSIGN_PRODUCT = "produto"
    TERMINATE = "finalizar"


KEYWORDS = ("nome", "tag", "etapa", "transferir", "fonte", "notificar", "produto", "finalizar")

# keywords that are meaningless without a value
VALUE_REQUIRED = {"tag", "etapa", "transferir", "fonte", "produto"}

_SIMPLE_KINDS = {
    "nome": DirectiveKind.RENAME,
    "tag": DirectiveKind.TAG,
    "etapa": DirectiveKind.STAGE,
    "fonte": DirectiveKind.SOURCE,
    "notificar": DirectiveKind.NOTIFY,
    "produto": DirectiveKind.ASSIGN_PRODUCT,
    "finalizar": DirectiveKind.TERMINATE,
}

DIRECTIVE_PATTERN = re.compile(
    r"(?<![\w@])@(" + "|".join(KEYWORDS) + r")(?::([^\s@]*[^\s@.,;!?]))?(?![\w:])",
    re.IGNORECASE,
)

_HORIZONTAL_SPACE = re.compile(r"[ \t]+")
_SPACE_AROUND_NEWLINE = re.compile(r"[ \t]*\n[ \t]*")
_EXTRA_NEWLINES = re.compile(r"\n{3,}")


@dataclass(frozen=True)
class Directive:
    kind: DirectiveKind
    value: Optional[str] = None
    raw: str = ""

    @property
    def token(self) -> str:
        """Canonical `@keyword[:value]` form."""
        if self.raw:
            return self.raw
        return render_token(self.kind, self.value)

    @property
    def keyword(self) -> str:
        if self.kind in (DirectiveKind.TRANSFER_TO_HUMAN, DirectiveKind.TRANSFER_TO_AGENT):
            return "transferir"
        return self.kind.value


@dataclass
class ParsedText:
    directives: list[Directive] = field(default_factory=list)
    clean_text: str = ""

    @property
    def tokens(self) -> list[str]:
        return [directive.token for directive in self.directives]


def parse_directive(keyword: str, value: Optional[str], raw: str = "") -> Optional[Directive]:
    """Build a Directive from a keyword/value pair, None when malformed."""
    keyword = (keyword or "").strip().lower()
    value = (value or "").strip() or None

    if keyword not in KEYWORDS:
        return None
    if keyword in VALUE_REQUIRED and not value:
        return None

    if keyword == "transferir":
        return _parse_transfer(value, raw)
    if keyword == "finalizar":
        return Directive(DirectiveKind.TERMINATE, None, raw)
    return Directive(_SIMPLE_KINDS[keyword], value, raw)


def _parse_transfer(value: str, raw: str) -> Optional[Directive]:
    target, _, reference = value.partition(":")
    target = target.lower()
    reference = reference.strip() or None

    if target == "humano" and reference is None:
        return Directive(DirectiveKind.TRANSFER_TO_HUMAN, None, raw)
    if target == "usuario":
        # bare `usuario` is the human queue, same as `humano`
        return Directive(DirectiveKind.TRANSFER_TO_HUMAN, reference, raw)
    if target == "ia" and reference is None:
        return Directive(DirectiveKind.TRANSFER_TO_AGENT, None, raw)
    if target == "agente" and reference:
        return Directive(DirectiveKind.TRANSFER_TO_AGENT, reference, raw)
    return None


def extract_directives(text: Optional[str]) -> ParsedText:
    """Collect every directive left to right and return the text without them."""
    if not text:
        return ParsedText()

    directives: list[Directive] = []
    pieces: list[str] = []
    cursor = 0
    for match in DIRECTIVE_PATTERN.finditer(text):
        directive = parse_directive(match.group(1), match.group(2), raw=match.group(0))
        if directive is None:
            continue
        directives.append(directive)
        pieces.append(text[cursor : match.start()])
        cursor = match.end()
    pieces.append(text[cursor:])

    return ParsedText(directives=directives, clean_text=normalize_spacing("".join(pieces)))


def strip_directives(text: Optional[str]) -> str:
    return extract_directives(text).clean_text


def normalize_spacing(text: str) -> str:
    text = _HORIZONTAL_SPACE.sub(" ", text)
    text = _SPACE_AROUND_NEWLINE.sub("\n", text)
    text = _EXTRA_NEWLINES.sub("\n\n", text)
    return text.strip()


def render_token(kind: DirectiveKind, value: Optional[str] = None) -> str:
    if kind == DirectiveKind.TRANSFER_TO_HUMAN:
        return f"@transferir:usuario:{value}" if value else "@transferir:humano"
    if kind == DirectiveKind.TRANSFER_TO_AGENT:
        return f"@transferir:agente:{value}" if value else "@transferir:ia"
    if value:
        return f"@{kind.value}:{value}"
    return f"@{kind.value}"


def combine(directives: Iterable[Directive], text: Optional[str]) -> str:
    """Inverse of extract_directives: directives first, then the message."""
    tokens = " ".join(directive.token for directive in directives)
    text = (text or "").strip()
    if not tokens:
        return text
    if not text:
        return tokens
    return f"{tokens}\n\n{text}"


def directives_from_tool_arguments(arguments: dict) -> list[Directive]:
    """`executar_acao` tool call arguments ({tipo, valor}) -> directives."""
    if not isinstance(arguments, dict):
        return []
    keyword = str(arguments.get("tipo") or "")
    value = arguments.get("valor")
    value = str(value) if value is not None else None
    directive = parse_directive(keyword, value)
    return [directive] if directive else []
