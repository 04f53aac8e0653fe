"""
test_extraction_service.py — The litellm-backed analyzer and the primary → fallback client.

litellm.acompletion is monkeypatched; no network access is made.
"""

import asyncio
from types import SimpleNamespace

import litellm
import pytest

from app.config import LLM_FALLBACK_MODEL, MSG_SCAN_FAILED
from app.services import llm_client
from app.services.extraction_service import (
    DrawingDocument,
    ExtractionError,
    LLMDrawingAnalyzer,
    parse_json_object,
    strip_code_fences,
)


class ScriptedClient:
    """LLMClient stand-in returning canned text (or raising) per call."""

    def __init__(self, document=None, text=None, error=None):
        self._document = document
        self._text = text
        self.error = error
        self.prompts = []

    async def document(self, data_b64, mime_type, prompt, response_schema=None, schema_name="response"):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self._document

    async def text(self, prompt, system=None):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self._text


def _response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def drawing():
    return DrawingDocument(name="V-101.pdf", mime_type="application/pdf", data=b"%PDF-1.7")


class TestParsing:

    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_empty_response_is_empty_object(self):
        assert parse_json_object("") == {}

    def test_non_object_is_rejected(self):
        with pytest.raises(ExtractionError):
            parse_json_object("[1, 2]")
        with pytest.raises(ExtractionError):
            parse_json_object("not json")


class TestAnalyzer:

    def test_scan_returns_entries(self, drawing):
        client = ScriptedClient(document='{"equipments": [{"tag": "V-101"}, "junk"]}')
        entries = asyncio.run(LLMDrawingAnalyzer(client).scan_structure(drawing))
        assert entries == [{"tag": "V-101"}]

    def test_scan_failure_raises_user_message(self, drawing):
        client = ScriptedClient(error=llm_client.LLMError("down"))
        with pytest.raises(ExtractionError) as exc:
            asyncio.run(LLMDrawingAnalyzer(client).scan_structure(drawing))
        assert str(exc.value) == MSG_SCAN_FAILED

    def test_unparseable_scan_raises(self, drawing):
        client = ScriptedClient(document="抱歉，无法识别")
        with pytest.raises(ExtractionError):
            asyncio.run(LLMDrawingAnalyzer(client).scan_structure(drawing))

    def test_detail_prompt_names_tag_and_pages(self, drawing):
        client = ScriptedClient(document='```json\n{"materials": []}\n```')
        details = asyncio.run(LLMDrawingAnalyzer(client).extract_details(drawing, "V-101", "第1-2页"))
        assert details == {"materials": []}
        assert "V-101" in client.prompts[0]
        assert "第1-2页" in client.prompts[0]

    def test_price_lookup_never_raises(self):
        client = ScriptedClient(error=RuntimeError("quota"))
        assert asyncio.run(LLMDrawingAnalyzer(client).lookup_prices(["Q345R"])) == {}

    def test_price_lookup_deduplicates_names(self):
        client = ScriptedClient(text='{"prices": [{"material": "Q345R", "pricePerKg": 6.5}]}')
        prices = asyncio.run(LLMDrawingAnalyzer(client).lookup_prices(["Q345R", "Q345R", ""]))
        assert prices == {"Q345R": 6.5}
        assert client.prompts[0].count("Q345R") == 1


class TestFallback:

    def test_primary_success(self, monkeypatch):
        calls = []

        async def fake_acompletion(model, **kwargs):
            calls.append(model)
            return _response("ok")

        monkeypatch.setattr(litellm, "acompletion", fake_acompletion)
        assert asyncio.run(llm_client.complete([{"role": "user", "content": "hi"}])) == "ok"
        assert len(calls) == 1

    def test_falls_back_without_response_format(self, monkeypatch):
        calls = []

        async def fake_acompletion(model, **kwargs):
            calls.append((model, kwargs))
            if len(calls) == 1:
                raise RuntimeError("primary down")
            return _response('{"equipments": []}')

        monkeypatch.setattr(litellm, "acompletion", fake_acompletion)
        text = asyncio.run(llm_client.complete(
            [{"role": "user", "content": "scan"}], response_schema={"type": "object"},
        ))
        assert text == '{"equipments": []}'
        fallback_model, fallback_kwargs = calls[1]
        assert fallback_model == LLM_FALLBACK_MODEL
        assert "response_format" not in fallback_kwargs
        assert fallback_kwargs["messages"][0]["role"] == "system"

    def test_both_failing_raises(self, monkeypatch):
        async def fake_acompletion(model, **kwargs):
            raise RuntimeError("down")

        monkeypatch.setattr(litellm, "acompletion", fake_acompletion)
        with pytest.raises(llm_client.LLMError):
            asyncio.run(llm_client.complete([{"role": "user", "content": "hi"}]))

    def test_octet_stream_is_sent_as_image(self):
        part = llm_client.document_part("QUJD", "application/octet-stream")
        assert part["image_url"]["url"] == "data:image/jpeg;base64,QUJD"
