"""
LLM Client Abstraction
Single entry point for all AI calls in VesselCost.
Primary: Gemini 2.5 Flash (vision + JSON schema output)
Fallback: configurable via LLM_FALLBACK_MODEL
"""
import logging
from typing import Any, Dict, List, Optional

import litellm

from app.config import (
    LLM_CHAT_MODEL,
    LLM_FALLBACK_MODEL,
    LLM_MAX_TOKENS,
    LLM_PRIMARY_MODEL,
    LLM_TEMPERATURE,
)

logger = logging.getLogger("vesselcost-llm")

# Suppress litellm verbose logging
litellm.set_verbose = False


class LLMError(RuntimeError):
    """Raised when every configured provider failed."""


def normalize_mime_type(mime_type: Optional[str]) -> str:
    # Browsers report unknown drawings as octet-stream; treat them as scans.
    if not mime_type or mime_type == "application/octet-stream":
        return "image/jpeg"
    return mime_type


def document_part(data_b64: str, mime_type: Optional[str]) -> Dict[str, Any]:
    return {
        "type": "image_url",
        "image_url": {"url": f"data:{normalize_mime_type(mime_type)};base64,{data_b64}"},
    }


def _schema_format(name: str, schema: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "json_schema", "json_schema": {"name": name, "schema": schema}}


async def complete(
    messages: list,
    temperature: float = LLM_TEMPERATURE,
    response_schema: Optional[Dict[str, Any]] = None,
    schema_name: str = "response",
    max_tokens: int = LLM_MAX_TOKENS,
    model: Optional[str] = None,
) -> str:
    """
    Call the primary model. Falls back to the secondary model on rate limit or error.
    Returns the response content string.
    """
    kwargs: Dict[str, Any] = {
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if response_schema is not None:
        kwargs["response_format"] = _schema_format(schema_name, response_schema)

    primary = model or LLM_PRIMARY_MODEL
    try:
        response = await litellm.acompletion(model=primary, **kwargs)
        return response.choices[0].message.content or ""
    except litellm.RateLimitError:
        logger.warning(f"{primary} rate limit hit — falling back to {LLM_FALLBACK_MODEL}")
    except litellm.AuthenticationError:
        logger.warning(f"{primary} auth error — falling back to {LLM_FALLBACK_MODEL}")
    except Exception as e:
        logger.warning(f"{primary} error ({type(e).__name__}: {e}) — falling back to {LLM_FALLBACK_MODEL}")

    # The fallback may not honour json_schema; ask for JSON in the prompt instead.
    fallback_kwargs = {k: v for k, v in kwargs.items() if k != "response_format"}
    if response_schema is not None:
        fallback_kwargs["messages"] = [
            {"role": "system", "content": "You must respond with valid JSON only."}
        ] + list(fallback_kwargs["messages"])
    try:
        response = await litellm.acompletion(model=LLM_FALLBACK_MODEL, **fallback_kwargs)
        return response.choices[0].message.content or ""
    except Exception as e:
        logger.error(f"Both LLMs failed. Fallback error: {e}")
        raise LLMError(f"All LLM providers failed. Last error: {e}") from e


async def complete_with_document(
    data_b64: str,
    mime_type: Optional[str],
    prompt: str,
    response_schema: Optional[Dict[str, Any]] = None,
    schema_name: str = "response",
    temperature: float = LLM_TEMPERATURE,
) -> str:
    """
    Vision call over one uploaded drawing (PDF or image), sent inline as base64.
    """
    messages = [{
        "role": "user",
        "content": [document_part(data_b64, mime_type), {"type": "text", "text": prompt}],
    }]
    return await complete(
        messages,
        temperature=temperature,
        response_schema=response_schema,
        schema_name=schema_name,
    )


class LLMClient:
    """
    Class-based wrapper around the module-level complete() / complete_with_document() functions.
    Used by the extraction service and the chat route.
    """

    async def document(
        self,
        data_b64: str,
        mime_type: Optional[str],
        prompt: str,
        response_schema: Optional[Dict[str, Any]] = None,
        schema_name: str = "response",
    ) -> str:
        return await complete_with_document(
            data_b64, mime_type, prompt, response_schema=response_schema, schema_name=schema_name
        )

    async def text(self, prompt: str, system: Optional[str] = None) -> str:
        messages: List[Dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return await complete(messages)

    async def chat(self, messages: list, temperature: float = 0.4) -> str:
        return await complete(messages, temperature=temperature, model=LLM_CHAT_MODEL)


def get_system_prompt(role: str) -> str:
    """Standard system prompts for different AI roles."""
    prompts = {
        "document_analyst": "你是一名资深的文档分析师，负责阅读压力容器工程图纸并建立设备目录索引。",
        "cost_engineer": "你是一位专业的压力容器造价工程师，熟悉板材、锻件、接管等材料清单的提取与估算。",
        "vessel_expert": (
            "你是一位压力容器专家。用户可能会发送图纸截图或询问数据。"
            "请根据提供的视觉信息和数据准确回答。"
        ),
    }
    return prompts.get(role, prompts["cost_engineer"])
