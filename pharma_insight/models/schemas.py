"""Dataclasses for performance records and generated analyses.

Input records arrive from the dashboard as camelCase JSON; ``from_dict``
accepts either camelCase or snake_case keys. Output objects are
serialized with ``dataclasses.asdict``.
"""

from dataclasses import dataclass, field
from typing import Any

from pharma_insight.models.enums import (
    EvidenceType,
    FactorImpact,
    HealthLevel,
    HospitalType,
    RecommendationCategory,
    Severity,
    SubjectKind,
    Trend,
)

_MISSING = object()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _read(data: dict[str, Any], name: str, default: Any = _MISSING) -> Any:
    """Look up *name* (snake_case) or its camelCase spelling in *data*."""
    if name in data:
        return data[name]
    camel = _camel(name)
    if camel in data:
        return data[camel]
    if default is _MISSING:
        raise KeyError(camel)
    return default


def _num(data: dict[str, Any], name: str, default: Any = _MISSING) -> float:
    return float(_read(data, name, default))


# ── Input records ─────────────────────────────────────────────────────────


@dataclass
class ProductPerformance:
    """Quarterly market performance of one product.

    Shares and rates are percentages; ``*_change`` fields are the
    percentage-point change against ``previous_period``.
    """

    product_id: str
    product_name: str
    molecule_formula: str
    molecule_share: float
    molecule_share_change: float
    molecule_internal_share: float
    molecule_internal_share_change: float
    competitor_share: float
    competitor_share_change: float
    de_limit_rate: float
    de_limit_rate_change: float
    period: str  # e.g. "2024-Q1"
    previous_period: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProductPerformance":
        return cls(
            product_id=str(_read(data, "product_id")),
            product_name=str(_read(data, "product_name", "")),
            molecule_formula=str(_read(data, "molecule_formula", "")),
            molecule_share=_num(data, "molecule_share", 0.0),
            molecule_share_change=_num(data, "molecule_share_change", 0.0),
            molecule_internal_share=_num(data, "molecule_internal_share", 0.0),
            molecule_internal_share_change=_num(data, "molecule_internal_share_change", 0.0),
            competitor_share=_num(data, "competitor_share", 0.0),
            competitor_share_change=_num(data, "competitor_share_change", 0.0),
            de_limit_rate=_num(data, "de_limit_rate", 0.0),
            de_limit_rate_change=_num(data, "de_limit_rate_change", 0.0),
            period=str(_read(data, "period")),
            previous_period=str(_read(data, "previous_period", "")),
        )


@dataclass
class ProvincePerformance:
    province_id: str
    province_name: str
    market_share: float
    roi: float
    non_lilu_ratio: float
    de_limit_rate: float
    penetration_rate: float
    health_score: float  # 0-100
    health_level: HealthLevel
    period: str

    @classmethod
    def _kwargs(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "province_id": str(_read(data, "province_id")),
            "province_name": str(_read(data, "province_name", "")),
            "market_share": _num(data, "market_share", 0.0),
            "roi": _num(data, "roi", 0.0),
            "non_lilu_ratio": _num(data, "non_lilu_ratio", 0.0),
            "de_limit_rate": _num(data, "de_limit_rate", 0.0),
            "penetration_rate": _num(data, "penetration_rate", 0.0),
            "health_score": _num(data, "health_score", 0.0),
            "health_level": HealthLevel(_read(data, "health_level", HealthLevel.AVERAGE)),
            "period": str(_read(data, "period")),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProvincePerformance":
        return cls(**cls._kwargs(data))


@dataclass
class HospitalPerformance:
    hospital_id: str
    hospital_name: str
    province: str
    type: HospitalType
    sales_volume: float = 0.0
    sales_volume_change: float = 0.0
    market_share: float = 0.0
    market_share_change: float = 0.0
    de_limit_status: bool = False
    penetration_rate: float = 0.0
    penetration_rate_change: float = 0.0
    period: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HospitalPerformance":
        return cls(
            hospital_id=str(_read(data, "hospital_id")),
            hospital_name=str(_read(data, "hospital_name", "")),
            province=str(_read(data, "province", "")),
            type=HospitalType(_read(data, "type", HospitalType.REGULAR)),
            sales_volume=_num(data, "sales_volume", 0.0),
            sales_volume_change=_num(data, "sales_volume_change", 0.0),
            market_share=_num(data, "market_share", 0.0),
            market_share_change=_num(data, "market_share_change", 0.0),
            de_limit_status=bool(_read(data, "de_limit_status", False)),
            penetration_rate=_num(data, "penetration_rate", 0.0),
            penetration_rate_change=_num(data, "penetration_rate_change", 0.0),
            period=str(_read(data, "period", "")),
        )


@dataclass
class ProvinceDetail(ProvincePerformance):
    """Province performance plus its hospital-level drill-down."""

    hospitals: list[HospitalPerformance] = field(default_factory=list)
    de_limit_rate_change: float | None = None
    market_share_change: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProvinceDetail":
        kwargs = cls._kwargs(data)
        change = _read(data, "de_limit_rate_change", None)
        share_change = _read(data, "market_share_change", None)
        return cls(
            **kwargs,
            hospitals=[HospitalPerformance.from_dict(h) for h in _read(data, "hospitals", [])],
            de_limit_rate_change=float(change) if change is not None else None,
            market_share_change=float(share_change) if share_change is not None else None,
        )


@dataclass
class ProvinceBaseline:
    province: str
    current: float
    historical_avg: float
    variance: float = 0.0
    trend: Trend = Trend.STABLE

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProvinceBaseline":
        return cls(
            province=str(_read(data, "province")),
            current=_num(data, "current"),
            historical_avg=_num(data, "historical_avg", 0.0),
            variance=_num(data, "variance", 0.0),
            trend=Trend(_read(data, "trend", Trend.STABLE)),
        )


@dataclass
class EnvironmentalFactor:
    factor: str
    impact: FactorImpact
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EnvironmentalFactor":
        return cls(
            factor=str(_read(data, "factor")),
            impact=FactorImpact(_read(data, "impact", FactorImpact.NEUTRAL)),
            description=str(_read(data, "description", "")),
        )


@dataclass
class TargetPlanRequest:
    """An indicator's baseline plus the optional national sales growth (percent).

    The national figures arrive nested under ``nationalBaseline``.
    """

    indicator_id: str
    indicator_name: str
    current: float
    historical_avg: float
    historical_median: float
    trend: Trend
    description: str = ""
    province_baselines: list[ProvinceBaseline] = field(default_factory=list)
    environmental_factors: list[EnvironmentalFactor] = field(default_factory=list)
    national_sales_growth: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TargetPlanRequest":
        national = _read(data, "national_baseline")
        if not isinstance(national, dict):
            raise TypeError("nationalBaseline must be an object")
        growth = _read(data, "national_sales_growth", None)
        if isinstance(growth, bool) or not (growth is None or isinstance(growth, (int, float))):
            raise TypeError("nationalSalesGrowth must be a number")
        return cls(
            indicator_id=str(_read(data, "indicator_id")),
            indicator_name=str(_read(data, "indicator_name", "")),
            current=_num(national, "current"),
            historical_avg=_num(national, "historical_avg", 0.0),
            historical_median=_num(national, "historical_median", 0.0),
            trend=Trend(_read(national, "trend", Trend.STABLE)),
            description=str(_read(data, "description", "")),
            province_baselines=[
                ProvinceBaseline.from_dict(p) for p in _read(data, "province_baselines", [])
            ],
            environmental_factors=[
                EnvironmentalFactor.from_dict(f) for f in _read(data, "environmental_factors", [])
            ],
            national_sales_growth=float(growth) if growth is not None else None,
        )


# ── Generated analysis ────────────────────────────────────────────────────


@dataclass
class RiskAlert:
    subject_id: str
    subject_name: str
    risk_level: Severity
    risk_type: str
    description: str
    indicators: list[str]
    change_magnitude: float


@dataclass
class Citation:
    id: str
    type: str  # internal / external / data
    source: str
    content: str
    relevance: str
    data_point: str | None = None


@dataclass(frozen=True)
class AIAnalysis:
    """A generated report for one product or province.

    Frozen: once an analysis is stored in the cache, readers share it.
    """

    type: SubjectKind
    target_id: str
    target_name: str
    period: str
    data_summary: str = ""
    key_findings: list[str] = field(default_factory=list)
    risk_alerts: list[RiskAlert] = field(default_factory=list)
    interpretation: str = ""
    interpretation_segments: list[dict[str, Any]] = field(default_factory=list)
    possible_reasons: list[str] = field(default_factory=list)
    suggested_actions: dict[str, list[str]] = field(default_factory=dict)
    related_info: list[dict[str, str]] = field(default_factory=list)
    citations: list[Citation] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AIAnalysis":
        """Rebuild the identifying parts of an analysis sent back by a client."""
        return cls(
            type=SubjectKind(_read(data, "type")),
            target_id=str(_read(data, "target_id")),
            target_name=str(_read(data, "target_name", "")),
            period=str(_read(data, "period", "")),
            data_summary=str(_read(data, "data_summary", "")),
            key_findings=[str(f) for f in _read(data, "key_findings", [])],
        )


@dataclass
class ProvinceTarget:
    province: str
    target: float
    baseline: float
    growth_rate: float
    reasoning: str


@dataclass(frozen=True)
class TargetPlan:
    """Planned national and per-province targets for one indicator."""

    indicator_id: str
    indicator_name: str
    national_baseline: float
    national_target: float
    national_sales_growth: float | None
    provinces: list[ProvinceTarget]
    planning_basis: dict[str, str]
    confidence: Severity
    risk_warnings: list[str]
    needs_manual_adjustment: bool
    adjustment_reason: str | None = None
    interpretation: str = ""


# ── Interpretation heuristics ─────────────────────────────────────────────


@dataclass
class DataPoint:
    label: str
    value: str | float
    change: float | None = None
    unit: str = ""


@dataclass
class AnomalyFinding:
    id: str
    type: str  # province / hospital / indicator
    severity: Severity
    title: str
    description: str
    data_point: DataPoint
    category: str = "national"
    location: dict[str, str] = field(default_factory=dict)
    related_data: list[dict[str, str]] = field(default_factory=list)


@dataclass
class Evidence:
    type: EvidenceType
    source: str
    description: str
    data_point: str | None = None


@dataclass
class RootCause:
    id: str
    anomaly_id: str
    cause: str
    evidence: list[Evidence]
    confidence: Severity


@dataclass
class RiskPoint:
    id: str
    title: str
    severity: Severity
    description: str
    related_anomalies: list[str]
    possible_causes: list[dict[str, Any]]
    solutions: dict[str, list[str]]


@dataclass
class MacroRecommendation:
    id: str
    category: RecommendationCategory
    title: str
    description: str
    priority: Severity
    related_risk_points: list[str]


@dataclass
class InterpretationReport:
    """All four interpretation layers for one product."""

    anomalies: list[AnomalyFinding]
    root_causes: list[RootCause]
    risk_points: list[RiskPoint]
    recommendations: list[MacroRecommendation]
    summary: dict[str, str] = field(default_factory=dict)
