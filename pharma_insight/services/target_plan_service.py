"""Rule-based indicator target planning.

Targets grow from the current value by a rate picked from the trend,
with extra room where a value sits below its historical average. An
optional national sales growth scales every target on top of that.
Volatile provinces and negative environmental factors lower the
confidence of the plan and are listed as risk warnings.
"""

from pharma_insight.config import (
    TARGET_CATCH_UP_GROWTH,
    TARGET_TREND_GROWTH,
    TARGET_VARIANCE_HIGH,
)
from pharma_insight.models.enums import FactorImpact, Severity, Trend
from pharma_insight.models.schemas import (
    ProvinceBaseline,
    ProvinceTarget,
    TargetPlan,
    TargetPlanRequest,
)

_TREND_TEXT = {Trend.UP: "上升", Trend.DOWN: "下降", Trend.STABLE: "平稳"}


def _fmt(value: float) -> str:
    return f"{value:g}"


def growth_rate(current: float, historical_avg: float, trend: Trend) -> float:
    """Planned growth in percent before any sales-growth adjustment."""
    rate = TARGET_TREND_GROWTH[trend.value]
    if current < historical_avg:
        rate += TARGET_CATCH_UP_GROWTH
    return rate


def apply_growth(value: float, rate: float, sales_growth: float | None) -> float:
    target = value * (1 + rate / 100)
    if sales_growth is not None:
        target *= 1 + sales_growth / 100
    return round(target, 2)


def is_volatile(baseline: ProvinceBaseline) -> bool:
    return baseline.variance > TARGET_VARIANCE_HIGH


def province_target(baseline: ProvinceBaseline, sales_growth: float | None) -> ProvinceTarget:
    rate = growth_rate(baseline.current, baseline.historical_avg, baseline.trend)
    reasons = [f"趋势{_TREND_TEXT[baseline.trend]}，基础增长{_fmt(TARGET_TREND_GROWTH[baseline.trend.value])}%"]
    if baseline.current < baseline.historical_avg:
        reasons.append(f"当前值低于历史平均{_fmt(baseline.historical_avg)}，预留回归空间")
    if is_volatile(baseline):
        reasons.append(f"历史方差{_fmt(baseline.variance)}偏大，目标需人工校准")
    if sales_growth is not None:
        reasons.append(f"叠加全国销售增速{_fmt(sales_growth)}%")
    return ProvinceTarget(
        province=baseline.province,
        target=apply_growth(baseline.current, rate, sales_growth),
        baseline=baseline.current,
        growth_rate=rate,
        reasoning="；".join(reasons),
    )


def risk_warnings(request: TargetPlanRequest) -> list[str]:
    warnings = [
        f"{f.factor}：{f.description}" if f.description else f.factor
        for f in request.environmental_factors
        if f.impact == FactorImpact.NEGATIVE
    ]
    warnings.extend(
        f"{p.province}历史波动较大（方差{_fmt(p.variance)}），目标可能需要人工校准"
        for p in request.province_baselines
        if is_volatile(p)
    )
    if request.trend == Trend.DOWN:
        warnings.append("全国趋势下降，目标仅按持平规划")
    return warnings


def confidence(request: TargetPlanRequest) -> Severity:
    negatives = sum(f.impact == FactorImpact.NEGATIVE for f in request.environmental_factors)
    volatile = sum(is_volatile(p) for p in request.province_baselines)
    total = len(request.province_baselines)
    if negatives >= 2 or (total and volatile * 2 > total):
        return Severity.LOW
    if negatives or volatile or request.trend == Trend.DOWN:
        return Severity.MEDIUM
    return Severity.HIGH


def planning_basis(request: TargetPlanRequest) -> dict[str, str]:
    volatile = [p.province for p in request.province_baselines if is_volatile(p)]
    basis = {
        "historical_trend": (
            f"全国当前值{_fmt(request.current)}，历史平均{_fmt(request.historical_avg)}，"
            f"中位数{_fmt(request.historical_median)}，趋势{_TREND_TEXT[request.trend]}"
        ),
        "province_variance": (
            f"{'、'.join(volatile)}波动较大" if volatile else "各省历史波动处于正常范围"
        ),
        "environmental_change": (
            "；".join(f"{f.factor}（{f.impact}）" for f in request.environmental_factors)
            or "无显著环境变化"
        ),
    }
    if request.national_sales_growth is not None:
        basis["sales_growth_impact"] = (
            f"全国销售增速目标{_fmt(request.national_sales_growth)}%，各目标按该增速同比例上调"
        )
    return basis


def plan_targets(request: TargetPlanRequest, interpretation: str = "") -> TargetPlan:
    """Build the target plan for one indicator."""
    sales_growth = request.national_sales_growth
    rate = growth_rate(request.current, request.historical_avg, request.trend)
    level = confidence(request)
    volatile = [p.province for p in request.province_baselines if is_volatile(p)]

    adjustment_reason = None
    if level == Severity.LOW:
        adjustment_reason = "置信度低，需结合一线反馈人工调整"
    elif volatile:
        adjustment_reason = f"{'、'.join(volatile)}历史波动较大，需人工校准分省目标"

    return TargetPlan(
        indicator_id=request.indicator_id,
        indicator_name=request.indicator_name,
        national_baseline=request.current,
        national_target=apply_growth(request.current, rate, sales_growth),
        national_sales_growth=sales_growth,
        provinces=[province_target(p, sales_growth) for p in request.province_baselines],
        planning_basis=planning_basis(request),
        confidence=level,
        risk_warnings=risk_warnings(request),
        needs_manual_adjustment=adjustment_reason is not None,
        adjustment_reason=adjustment_reason,
        interpretation=interpretation,
    )
