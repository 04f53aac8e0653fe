"""
test_chat_service.py — Chat turns against a fake LLM client.
"""

import asyncio
import json

from app.config import MSG_CHAT_FAILED, MSG_NO_DATA_CONTEXT
from app.models.schemas import ChatMessage
from app.services.chat_service import ChatService, build_messages, data_context
from app.services.perf_monitor import tracker


class TestContext:

    def test_empty_ledger(self, ledger):
        assert data_context(ledger) == MSG_NO_DATA_CONTEXT

    def test_every_bom_line_is_listed(self, ledger, scenario_equipment):
        asyncio.run(ledger.absorb([scenario_equipment]))
        lines = json.loads(data_context(ledger))
        assert [line["item"] for line in lines] == ["V-2404 - 筒体", "V-2404 - 法兰"]
        assert lines[1]["mat"] == "Q345R"


class TestBuildMessages:

    def test_history_roles_and_error_turns(self):
        history = [
            ChatMessage(role="user", text="多重？"),
            ChatMessage(role="model", text="约 2 吨"),
            ChatMessage(role="model", text="出错了", is_error=True),
        ]
        messages = build_messages(history, "造价多少？", "[]")
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        parts = messages[-1]["content"]
        assert parts[0] == {"type": "text", "text": "造价多少？"}
        assert parts[-1]["text"] == "参考数据: []"

    def test_screenshot_goes_first(self):
        parts = build_messages([], "这是什么？", "ctx", screenshot_b64="QUJD")[-1]["content"]
        assert parts[0]["type"] == "image_url"
        assert parts[0]["image_url"]["url"].startswith("data:image/jpeg;base64,QUJD")
        assert len(parts) == 4


class TestReply:

    def test_reply_is_model_message(self, ledger, fake_chat_client_cls):
        client = fake_chat_client_cls(reply="总重约 23 kg")
        reply = asyncio.run(ChatService(client).reply(ledger, "总重？"))
        assert reply.role == "model"
        assert reply.text == "总重约 23 kg"
        assert not reply.is_error
        assert len(client.calls) == 1

    def test_failure_becomes_error_message(self, ledger, fake_chat_client_cls):
        tracker.reset()
        client = fake_chat_client_cls(error=RuntimeError("boom"))
        reply = asyncio.run(ChatService(client).reply(ledger, "总重？"))
        assert reply.is_error
        assert reply.text == MSG_CHAT_FAILED
        assert tracker.get_metrics()["error_count_by_stage"] == {"chat": 1}
