"""Chat API — questions about the current project, answered with its BOM as context."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_chat_service, get_ledger
from app.models.schemas import CamelModel, ChatMessage
from app.services.chat_service import ChatService
from app.services.ledger import ProjectLedger

router = APIRouter(prefix="/api/chat", tags=["AI Chat"])


class ChatRequest(CamelModel):
    message: str
    history: List[ChatMessage] = []
    screenshot: Optional[str] = None  # base64 JPEG of the drawing view


@router.post("")
async def chat(
    body: ChatRequest,
    ledger: ProjectLedger = Depends(get_ledger),
    service: ChatService = Depends(get_chat_service),
):
    if not body.message.strip():
        raise HTTPException(status_code=400, detail="Empty message")
    reply = await service.reply(ledger, body.message, body.history, body.screenshot)
    return reply.model_dump(by_alias=True)
