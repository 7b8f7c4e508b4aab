"""Model context for one reply: system prompt followed by recent history."""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from atendimento.models import AIAgent, Message, MessageDirection, MessageType
from atendimento.services.directives import DIRECTIVE_PATTERN

HISTORY_LIMIT = 20

WEEKDAYS = ["domingo", "segunda-feira", "terça-feira", "quarta-feira", "quinta-feira", "sexta-feira", "sábado"]
MONTHS = [
    "janeiro",
    "fevereiro",
    "março",
    "abril",
    "maio",
    "junho",
    "julho",
    "agosto",
    "setembro",
    "outubro",
    "novembro",
    "dezembro",
]

ACTIONS_SECTION = """## AÇÕES DISPONÍVEIS
Você pode executar as seguintes ações quando apropriado:
- @etapa:<nome> - Mover o lead para uma etapa específica do CRM
- @tag:<nome> - Adicionar uma tag ao contato
- @transferir:humano - Transferir a conversa para um atendente humano
- @transferir:ia - Devolver a conversa para o agente IA principal
- @transferir:agente:<id_ou_nome> - Transferir a conversa para outro agente IA específico
- @fonte:<origem> - Registrar a origem do lead
- @produto:<nome> - Associar um produto ao lead
- @notificar - Enviar notificação para a equipe
- @finalizar - Encerrar a conversa
- @nome:<novo-nome> - Alterar o nome do contato quando o cliente se identificar

Quando identificar que uma ação deve ser executada baseado no contexto da conversa, use a ferramenta executar_acao.

## REGRAS IMPORTANTES
- NUNCA mencione ao cliente que está executando ações internas como transferências, mudanças de etapa, tags, etc.
- NUNCA inclua comandos @ na sua resposta ao cliente (ex: @transferir, @etapa, @tag).
- As ações são executadas silenciosamente em background. Mantenha o fluxo natural da conversa.
- Quando transferir para outro agente, apenas se despeça naturalmente sem mencionar a transferência.
"""

RESTRICTIONS_SECTION = """## RESTRIÇÕES ABSOLUTAS
- NUNCA invente informações sobre você, sua identidade, sua empresa ou seus serviços.
- Se o lead perguntar "quem é você?", "o que você faz?" ou algo parecido, responda APENAS com informações configuradas acima.
- Se não houver informação suficiente para responder, diga educadamente que pode ajudar com outras questões \
ou que a equipe entrará em contato.
- NUNCA adicione detalhes, funções, serviços ou características que não foram mencionados nas instruções acima.
- Mantenha-se estritamente dentro do escopo das informações fornecidas.
"""

ACTION_TOOL = {
    "type": "function",
    "function": {
        "name": "executar_acao",
        "description": (
            "Executa uma ação automatizada como mover lead para etapa do CRM, adicionar tag, "
            "transferir conversa ou alterar nome do contato."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "tipo": {
                    "type": "string",
                    "enum": ["etapa", "tag", "transferir", "fonte", "notificar", "produto", "finalizar", "nome"],
                    "description": "Tipo da ação a ser executada.",
                },
                "valor": {
                    "type": "string",
                    "description": (
                        "Valor da ação: nome da etapa, nome da tag, destino da transferência "
                        "(humano, ia, agente:<nome>), novo nome do contato..."
                    ),
                },
            },
            "required": ["tipo"],
        },
    },
}


@dataclass
class PromptContext:
    messages: List[dict]
    tools: Optional[List[dict]] = None


def day_period(hour: int) -> str:
    if 5 <= hour < 12:
        return "manhã"
    if 12 <= hour < 18:
        return "tarde"
    if 18 <= hour < 24:
        return "noite"
    return "madrugada"


def weekday_index(local_now: datetime) -> int:
    """0 = Sunday, matching dias_ativos."""
    return (local_now.weekday() + 1) % 7


def agent_has_actions(agent: AIAgent) -> bool:
    return any(DIRECTIVE_PATTERN.search(stage.description or "") for stage in agent.stages or [])


def build_system_prompt(agent: AIAgent, local_now: datetime, trigger: Optional[Message] = None) -> str:
    parts = [(agent.system_prompt or "").strip()]

    parts.append(
        "## CONTEXTO TEMPORAL\n"
        f"- Data atual: {local_now.day} de {MONTHS[local_now.month - 1]} de {local_now.year}\n"
        f"- Dia da semana: {WEEKDAYS[weekday_index(local_now)]}\n"
        f"- Horário atual: {local_now:%H:%M}\n"
        f"- Período do dia: {day_period(local_now.hour)}\n\n"
        "Use estas informações para cumprimentos apropriados (Bom dia/Boa tarde/Boa noite) e referências temporais."
    )

    transcript = _transcript_of(trigger)
    if transcript:
        parts.append(
            "## CONTEXTO DE MÍDIA\n"
            f'O lead enviou um áudio. Transcrição do áudio:\n"{transcript}"\n\n'
            "Responda naturalmente como se tivesse ouvido e compreendido o áudio. "
            "Não mencione que recebeu uma transcrição."
        )

    image_description = _image_description_of(trigger)
    if image_description:
        parts.append(
            "## CONTEXTO DE MÍDIA\n"
            f'O lead enviou uma imagem. Análise da imagem:\n"{image_description}"\n\n'
            "Responda naturalmente baseado no conteúdo da imagem. Exemplos de comportamento:\n"
            "- Se for um comprovante de pagamento: confirme o recebimento e mencione o valor se visível.\n"
            "- Se for um produto: identifique e forneça informações relevantes.\n"
            "- Se tiver dados importantes (valores, datas, nomes): mencione-os naturalmente.\n"
            "- Se for um screenshot de erro: ajude a resolver o problema.\n"
            "Não mencione que recebeu uma análise ou descrição da imagem. "
            "Aja como se tivesse visto a imagem diretamente."
        )

    stages = sorted(agent.stages or [], key=lambda stage: stage.number)
    if stages:
        lines = ["## ETAPAS DE ATENDIMENTO", "Siga estas etapas no fluxo de atendimento:", ""]
        for stage in stages:
            kind = f" ({stage.kind})" if stage.kind else ""
            lines.append(f"### Etapa {stage.number}{kind}: {stage.name}")
            if stage.description:
                lines.append(stage.description.strip())
            lines.append("")
        parts.append("\n".join(lines).rstrip())

    faqs = sorted(agent.faqs or [], key=lambda faq: faq.position)
    if faqs:
        lines = ["## PERGUNTAS FREQUENTES", "Use estas respostas quando apropriado:", ""]
        for faq in faqs:
            lines.append(f"**P: {faq.question}**")
            lines.append(f"R: {faq.answer}")
            lines.append("")
        parts.append("\n".join(lines).rstrip())

    if agent_has_actions(agent):
        parts.append(ACTIONS_SECTION.rstrip())

    parts.append(RESTRICTIONS_SECTION.rstrip())
    return "\n\n".join(part for part in parts if part)


def _transcript_of(message: Optional[Message]) -> Optional[str]:
    if message is None or message.message_type != MessageType.AUDIO.value:
        return None
    return (message.message_metadata or {}).get("transcricao")


def _image_description_of(message: Optional[Message]) -> Optional[str]:
    if message is None or message.message_type != MessageType.IMAGE.value:
        return None
    return (message.message_metadata or {}).get("descricao_imagem")


def load_history(
    db: Session,
    conversation_id: UUID,
    *,
    since: Optional[datetime] = None,
    limit: int = HISTORY_LIMIT,
) -> List[Message]:
    """Last `limit` customer-visible messages, oldest first."""
    query = db.query(Message).filter(
        Message.conversation_id == conversation_id,
        Message.message_type != MessageType.SYSTEM.value,
        Message.deleted == False,  # noqa: E712
    )
    if since is not None:
        query = query.filter(Message.created_at > since)
    messages = query.order_by(Message.created_at.desc()).limit(limit).all()
    return list(reversed(messages))


def to_turn(message: Message) -> dict:
    role = "user" if message.direction == MessageDirection.INBOUND.value else "assistant"
    content = _transcript_of(message) or message.content
    return {"role": role, "content": content}


def build_turns(system_prompt: str, history: List[Message], trigger: Optional[Message]) -> List[dict]:
    turns = [{"role": "system", "content": system_prompt}]
    turns.extend(to_turn(message) for message in history)

    if trigger is not None and not _is_last(history, trigger):
        # persistence lag: the message that caused this cycle is not visible yet
        turns.append({"role": "user", "content": _transcript_of(trigger) or trigger.content})
    return turns


def _is_last(history: List[Message], trigger: Message) -> bool:
    if not history:
        return False
    last = history[-1]
    if last.id is not None and trigger.id is not None:
        return last.id == trigger.id
    return last.content == trigger.content


def assemble_prompt(
    db: Session,
    conversation,
    agent: AIAgent,
    trigger: Optional[Message],
    local_now: datetime,
) -> PromptContext:
    history = load_history(db, conversation.id, since=conversation.memory_cleared_at)
    system_prompt = build_system_prompt(agent, local_now, trigger)
    tools = [ACTION_TOOL] if agent_has_actions(agent) else None
    return PromptContext(messages=build_turns(system_prompt, history, trigger), tools=tools)
