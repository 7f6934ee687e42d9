"""Tests for anomaly, root-cause, risk and recommendation layers."""

from pharma_insight.models.enums import RecommendationCategory, Severity
from pharma_insight.models.schemas import ProductPerformance, ProvinceDetail
from pharma_insight.services.interpretation_service import (
    COMPETITOR_ANOMALY,
    CORE_HOSPITAL_ANOMALY,
    DELIMIT_ANOMALY,
    HIGH_POTENTIAL_ANOMALY,
    INTERNAL_SHARE_ANOMALY,
    assess_risks,
    detect_anomalies,
    find_root_causes,
    interpret,
    recommend,
)
from tests.fixtures.sample_data import make_product, make_province_details, make_stable_product


def _provinces() -> list[ProvinceDetail]:
    return [ProvinceDetail.from_dict(p) for p in make_province_details()]


class TestAnomalies:
    def test_indicator_and_hospital_anomalies(self, product):
        anomalies = detect_anomalies(product, _provinces())
        assert [a.title for a in anomalies] == [
            DELIMIT_ANOMALY,
            INTERNAL_SHARE_ANOMALY,
            COMPETITOR_ANOMALY,
            CORE_HOSPITAL_ANOMALY,
            HIGH_POTENTIAL_ANOMALY,
            HIGH_POTENTIAL_ANOMALY,
        ]
        assert [a.id for a in anomalies] == [f"anomaly-{i}" for i in range(1, 7)]

    def test_severity_thresholds(self, product):
        anomalies = detect_anomalies(product, [])
        # de-limit -4 is medium (> 5 is high), internal share -3.5 is high, competitor +2.5 medium
        assert [a.severity for a in anomalies] == [Severity.MEDIUM, Severity.HIGH, Severity.MEDIUM]

    def test_big_delimit_drop_is_high(self):
        p = ProductPerformance.from_dict(make_product(deLimitRateChange=-6.0))
        assert detect_anomalies(p, [])[0].severity == Severity.HIGH

    def test_delimit_description(self, product):
        anomaly = detect_anomalies(product, [])[0]
        assert "从66.0%下降至62.0%" in anomaly.description
        assert anomaly.data_point.change == -4.0

    def test_stable_product_has_none(self):
        p = ProductPerformance.from_dict(make_stable_product())
        assert detect_anomalies(p, []) == []


class TestRootCauses:
    def test_causes_per_anomaly(self, product):
        provinces = _provinces()
        causes = find_root_causes(detect_anomalies(product, provinces), provinces)
        assert [c.id for c in causes] == [f"cause-{i}" for i in range(1, len(causes) + 1)]

        delimit = [c for c in causes if c.anomaly_id == "anomaly-1"]
        # 安徽 (50%) is worse than 浙江 (58%); both fall more than 2pt
        assert delimit[0].cause.startswith("安徽解限率下降尤其多")
        assert delimit[0].confidence == Severity.HIGH
        assert "浙江" in delimit[1].cause
        assert delimit[1].confidence == Severity.MEDIUM

    def test_internal_share_lists_low_share_provinces(self, product):
        provinces = _provinces()
        causes = find_root_causes(detect_anomalies(product, provinces), provinces)
        share = next(c for c in causes if c.anomaly_id == "anomaly-2")
        assert "安徽、浙江" in share.cause
        assert "江苏" not in share.cause

    def test_high_potential_cause(self, product):
        provinces = _provinces()
        causes = find_root_causes(detect_anomalies(product, provinces), provinces)
        hp = causes[-1]
        assert hp.cause.startswith("浙江高潜医院整体表现不佳，平均渗透率仅32.5%")
        assert hp.anomaly_id == "anomaly-1"

    def test_no_indicator_anomalies(self):
        p = ProductPerformance.from_dict(make_stable_product())
        assert find_root_causes(detect_anomalies(p, []), []) == []


class TestRisksAndRecommendations:
    def test_risk_families(self, product):
        anomalies = detect_anomalies(product, _provinces())
        risks = assess_risks(product, anomalies)
        assert [r.title for r in risks] == [
            "市场准入风险：多省份解限率下降",
            "核心医院渗透率下降风险",
            "高潜医院增长潜力未发挥",
            "产品竞争力下降风险",
        ]
        assert risks[2].description == "2家高潜医院表现不佳，未发挥增长潜力"
        assert risks[0].related_anomalies == ["anomaly-1"]

    def test_recommendations_end_with_data_driven(self, product):
        risks = assess_risks(product, detect_anomalies(product, _provinces()))
        recs = recommend(risks)
        assert [r.id for r in recs] == ["rec-1", "rec-2", "rec-3", "rec-4"]
        assert recs[-1].title == "加强数据驱动的决策机制"
        assert recs[-1].category == RecommendationCategory.ORGANIZATION
        assert recs[-1].related_risk_points == [r.id for r in risks]

    def test_no_risks_still_recommends(self):
        recs = recommend([])
        assert [r.title for r in recs] == ["加强数据驱动的决策机制"]


class TestInterpret:
    def test_full_report(self, product):
        report = interpret(product, _provinces())
        assert len(report.anomalies) == 6
        assert report.summary["overall_performance"] == "立普妥分子式内份额下降3.5%，产品竞争力下降。"
        assert report.summary["main_risks"] == f"{DELIMIT_ANOMALY}；{INTERNAL_SHARE_ANOMALY}"

    def test_stable_summary(self):
        p = ProductPerformance.from_dict(make_stable_product())
        report = interpret(p, [])
        assert report.summary == {
            "overall_performance": "立普妥整体表现稳定。",
            "main_risks": "暂无重大风险",
            "key_finding": "需要进一步分析",
            "suggestions": "持续监控数据变化",
        }
