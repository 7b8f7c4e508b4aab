from pydantic import BaseModel


class WebhookResponse(BaseModel):
    success: bool
    message: str
    stored: int = 0
    duplicates: int = 0
