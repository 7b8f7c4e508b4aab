from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class ProcessPendingResponse(BaseModel):
    success: bool
    conversa_id: UUID
    resultado: str
    detalhe: Optional[str] = None
