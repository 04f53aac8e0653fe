"""
Chat Service — free-form Q&A about the current project.

Each turn sends the conversation so far, the user's message, an optional
drawing screenshot and a compact JSON view of every BOM line in the ledger.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from app.config import MSG_CHAT_FAILED, MSG_NO_DATA_CONTEXT
from app.models.schemas import ChatMessage
from app.services.ledger import ProjectLedger
from app.services.llm_client import LLMClient, document_part, get_system_prompt
from app.services.perf_monitor import tracker

logger = logging.getLogger("vesselcost-chat")

SCREENSHOT_HINT = "请参考附带的图纸截图回答。"


def data_context(ledger: ProjectLedger) -> str:
    lines = ledger.material_context()
    if not lines:
        return MSG_NO_DATA_CONTEXT
    return json.dumps(lines, ensure_ascii=False)


def build_messages(
    history: Sequence[ChatMessage],
    message: str,
    context: str,
    screenshot_b64: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """OpenAI-style message list: system, prior turns, then the new user turn."""
    messages: List[Dict[str, Any]] = [
        {"role": "system", "content": get_system_prompt("vessel_expert")}
    ]
    for turn in history:
        if turn.is_error:
            continue
        messages.append({
            "role": "assistant" if turn.role == "model" else "user",
            "content": turn.text,
        })

    parts: List[Dict[str, Any]] = [{"type": "text", "text": message}]
    if screenshot_b64:
        parts.insert(0, document_part(screenshot_b64, "image/jpeg"))
        parts.append({"type": "text", "text": SCREENSHOT_HINT})
    parts.append({"type": "text", "text": f"参考数据: {context}"})
    messages.append({"role": "user", "content": parts})
    return messages


class ChatService:

    def __init__(self, client: Optional[LLMClient] = None):
        self.client = client or LLMClient()

    async def reply(
        self,
        ledger: ProjectLedger,
        message: str,
        history: Sequence[ChatMessage] = (),
        screenshot_b64: Optional[str] = None,
    ) -> ChatMessage:
        """Answer one user turn. Failures come back as an error message, never raised."""
        messages = build_messages(history, message, data_context(ledger), screenshot_b64)
        try:
            text = await self.client.chat(messages)
        except Exception as e:
            tracker.record_error("chat")
            logger.error(f"Chat completion failed: {e}")
            return ChatMessage(role="model", text=MSG_CHAT_FAILED, is_error=True)
        return ChatMessage(role="model", text=text)
