"""Tests for the chat assistant and its refresh-request handling."""

import asyncio
from unittest.mock import patch

import httpx

from pharma_insight.models.enums import SubjectKind
from pharma_insight.models.schemas import AIAnalysis
from pharma_insight.services.chat_service import (
    ERROR_REPLY,
    REFRESH_HINT,
    ChatService,
    analysis_key,
    build_messages,
    mock_reply,
    wants_refresh,
)
from tests.fixtures.sample_data import chat_response


def _analysis(**overrides) -> AIAnalysis:
    fields = {
        "type": SubjectKind.PRODUCT,
        "target_id": "P001",
        "target_name": "立普妥",
        "period": "",
        "data_summary": "产品立普妥在2024-Q1的表现分析",
        "key_findings": ["分子式内份额下降3.5%", "解限率下降4%"],
    }
    fields.update(overrides)
    return AIAnalysis(**fields)


def _user(content: str) -> list[dict[str, str]]:
    return [{"role": "user", "content": content}]


class TestHelpers:
    def test_refresh_keywords(self):
        assert wants_refresh("请重新分析一下")
        assert wants_refresh("Please REFRESH")
        assert not wants_refresh("解释一下解限率")

    def test_key_from_summary_period(self):
        assert analysis_key(_analysis()) == "product-P001-2024-Q1"

    def test_key_falls_back_to_period_field(self):
        analysis = _analysis(type=SubjectKind.PROVINCE, data_summary="", period="2024-Q2")
        assert analysis_key(analysis) == "province-P001-2024-Q2"

    def test_mock_reply_by_topic(self):
        assert mock_reply("如何提升渗透").startswith('基于晖致的"解限-渗透-做广"')
        assert mock_reply("省份怎么样").startswith("省份表现分析")
        assert mock_reply("你好").startswith("我是晖致公司的AI业务顾问")

    def test_build_messages_with_context(self):
        messages = build_messages(
            [{"role": "system", "content": "ignored"}, {"role": "user", "content": "hi"}],
            current_page="产品分析",
            analysis=_analysis(),
        )
        assert messages[0]["content"].endswith("当前上下文：用户正在查看产品分析。")
        assert messages[1]["content"] == (
            "当前分析数据：立普妥的产品分析报告。关键发现：分子式内份额下降3.5%; 解限率下降4%"
        )
        assert messages[2:] == [{"role": "user", "content": "hi"}]

    def test_build_messages_without_context(self):
        messages = build_messages(_user("hi"))
        assert "当前上下文" not in messages[0]["content"]
        assert len(messages) == 2


class TestReply:
    def test_offline_reply(self, offline_client, cache):
        reply = asyncio.run(ChatService(offline_client, cache).reply(_user("产品市场份额")))
        assert reply.messages == [mock_reply("产品市场份额")]
        assert not reply.refresh_marked

    def test_refresh_request_marks_key(self, offline_client, cache):
        cache.set("product-P001-2024-Q1", "old analysis")
        service = ChatService(offline_client, cache)
        reply = asyncio.run(service.reply(_user("请刷新分析"), analysis=_analysis()))
        assert reply.refresh_key == "product-P001-2024-Q1"
        assert reply.messages[-1] == REFRESH_HINT
        assert cache.is_stale("product-P001-2024-Q1")
        assert cache.get("product-P001-2024-Q1") == "old analysis"
        assert cache.refresh_counter == 1

    def test_refresh_without_analysis_does_nothing(self, offline_client, cache):
        reply = asyncio.run(ChatService(offline_client, cache).reply(_user("刷新")))
        assert reply.refresh_key is None
        assert cache.refresh_counter == 0

    def test_refresh_with_underivable_key(self, offline_client, cache):
        analysis = _analysis(data_summary="没有周期", period="")
        reply = asyncio.run(ChatService(offline_client, cache).reply(_user("刷新"), analysis=analysis))
        assert reply.refresh_key is None
        assert len(reply.messages) == 1
        assert cache.stale_keys() == []

    def test_online_reply(self, online_client, cache):
        resp = httpx.Response(200, json=chat_response("模型回答"))
        resp.request = httpx.Request("POST", "https://api.example.com/v1/chat/completions")
        with patch("httpx.post", return_value=resp):
            reply = asyncio.run(ChatService(online_client, cache).reply(_user("你好")))
        assert reply.messages == ["模型回答"]

    def test_online_failure_falls_back(self, online_client, cache):
        with patch("httpx.post", side_effect=httpx.ConnectError("refused")):
            reply = asyncio.run(ChatService(online_client, cache).reply(_user("你好")))
        assert reply.messages == [mock_reply("你好")]

    def test_unexpected_error_apologises(self, online_client, cache):
        with patch.object(online_client, "chat", side_effect=RuntimeError("boom")):
            reply = asyncio.run(
                ChatService(online_client, cache).reply(_user("刷新"), analysis=_analysis())
            )
        assert reply.messages == [ERROR_REPLY]
        assert cache.refresh_counter == 0

    def test_non_string_content_with_analysis(self, online_client, cache):
        resp = httpx.Response(200, json=chat_response("模型回答"))
        resp.request = httpx.Request("POST", "https://api.example.com/v1/chat/completions")
        service = ChatService(online_client, cache)
        with patch("httpx.post", return_value=resp):
            for content in (None, 42):
                reply = asyncio.run(
                    service.reply([{"role": "user", "content": content}], analysis=_analysis())
                )
                assert reply.messages == ["模型回答"]
                assert reply.refresh_key is None
        assert cache.refresh_counter == 0
