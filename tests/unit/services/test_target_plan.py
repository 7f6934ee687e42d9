"""Tests for indicator target planning and its generator entry point."""

import asyncio
from unittest.mock import patch

import httpx
import pytest

from pharma_insight.models.enums import Severity, SubjectKind, Trend
from pharma_insight.models.schemas import TargetPlanRequest
from pharma_insight.services.analysis_generator import AnalysisGenerator, mock_response
from pharma_insight.services.target_plan_service import growth_rate, plan_targets
from tests.fixtures.sample_data import chat_response, make_target_plan_request


def _request(**overrides) -> TargetPlanRequest:
    return TargetPlanRequest.from_dict(make_target_plan_request(**overrides))


class TestRequestParsing:
    def test_nested_national_baseline(self):
        request = _request()
        assert request.indicator_id == "ind007"
        assert request.current == 40.0
        assert request.trend == Trend.UP
        assert [p.province for p in request.province_baselines] == ["浙江", "安徽"]
        assert request.national_sales_growth is None

    def test_growth_read(self):
        assert _request(nationalSalesGrowth=15).national_sales_growth == 15.0

    def test_missing_national_baseline(self):
        body = make_target_plan_request()
        del body["nationalBaseline"]
        with pytest.raises(KeyError):
            TargetPlanRequest.from_dict(body)

    @pytest.mark.parametrize("growth", ["15", True])
    def test_non_numeric_growth(self, growth):
        with pytest.raises(TypeError):
            _request(nationalSalesGrowth=growth)

    def test_unknown_trend(self):
        body = make_target_plan_request()
        body["nationalBaseline"]["trend"] = "sideways"
        with pytest.raises(ValueError):
            TargetPlanRequest.from_dict(body)


class TestPlanning:
    def test_growth_rate_by_trend(self):
        assert growth_rate(50, 40, Trend.UP) == 5.0
        assert growth_rate(50, 40, Trend.STABLE) == 2.0
        assert growth_rate(50, 40, Trend.DOWN) == 0.0
        assert growth_rate(30, 40, Trend.DOWN) == 1.0

    def test_plan_without_growth(self):
        plan = plan_targets(_request())
        assert plan.national_target == pytest.approx(42.4)
        zhejiang, anhui = plan.provinces
        assert zhejiang.target == pytest.approx(47.25)
        assert zhejiang.growth_rate == 5.0
        assert anhui.target == pytest.approx(30.3)
        assert "预留回归空间" in anhui.reasoning
        assert "sales_growth_impact" not in plan.planning_basis

    def test_sales_growth_scales_targets(self):
        plan = plan_targets(_request(nationalSalesGrowth=10))
        assert plan.national_target == pytest.approx(46.64)
        assert plan.provinces[0].target == pytest.approx(51.98, abs=0.01)
        assert "10%" in plan.planning_basis["sales_growth_impact"]

    def test_volatile_province_needs_manual_adjustment(self):
        plan = plan_targets(_request())
        assert plan.confidence == Severity.MEDIUM
        assert plan.needs_manual_adjustment is True
        assert plan.adjustment_reason == "安徽历史波动较大，需人工校准分省目标"
        assert plan.risk_warnings == [
            "集采扩面：更多品种纳入带量采购",
            "安徽历史波动较大（方差12），目标可能需要人工校准",
        ]

    def test_calm_baseline_is_high_confidence(self):
        plan = plan_targets(
            _request(
                provinceBaselines=[{"province": "浙江", "current": 45.0, "historicalAvg": 44.0}],
                environmentalFactors=[],
            )
        )
        assert plan.confidence == Severity.HIGH
        assert plan.needs_manual_adjustment is False
        assert plan.adjustment_reason is None
        assert plan.risk_warnings == []

    def test_mostly_volatile_is_low_confidence(self):
        body = make_target_plan_request()
        for province in body["provinceBaselines"]:
            province["variance"] = 20.0
        plan = plan_targets(TargetPlanRequest.from_dict(body))
        assert plan.confidence == Severity.LOW
        assert plan.adjustment_reason == "置信度低，需结合一线反馈人工调整"


class TestGenerator:
    def test_offline_uses_canned_interpretation(self, offline_client):
        plan = asyncio.run(AnalysisGenerator(offline_client).plan_targets(_request()))
        assert plan.interpretation == mock_response(SubjectKind.TARGET_PLAN)
        assert plan.indicator_id == "ind007"

    def test_prompt_carries_baseline_and_growth(self, online_client):
        resp = httpx.Response(200, json=chat_response("规划说明"))
        resp.request = httpx.Request("POST", "https://api.example.com/v1/chat/completions")
        with patch("httpx.post", return_value=resp) as mock_post:
            plan = asyncio.run(
                AnalysisGenerator(online_client).plan_targets(_request(nationalSalesGrowth=15))
            )
        assert plan.interpretation == "规划说明"
        prompt = mock_post.call_args.kwargs["json"]["messages"][1]["content"]
        assert "全国当前值：40" in prompt
        assert "- 安徽: 当前值30, 历史平均33, 方差12, 趋势down" in prompt
        assert "全国销售增速目标：15%" in prompt
