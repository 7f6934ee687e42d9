"""Domain enumerations for sales analysis and cache keys."""

from enum import StrEnum


class SubjectKind(StrEnum):
    """What a cached analysis is about (first component of a cache key)."""

    PRODUCT = "product"
    PROVINCE = "province"
    TARGET_PLAN = "targetplan"


class Severity(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class HealthLevel(StrEnum):
    EXCELLENT = "excellent"
    GOOD = "good"
    AVERAGE = "average"
    POOR = "poor"


class HospitalType(StrEnum):
    CORE = "core"
    HIGH_POTENTIAL = "highPotential"
    REGULAR = "regular"


class EvidenceType(StrEnum):
    DATA = "data"
    EXTERNAL = "external"
    INTERNAL = "internal"


class RecommendationCategory(StrEnum):
    STRATEGY = "strategy"
    OPERATION = "operation"
    RESOURCE = "resource"
    ORGANIZATION = "organization"


class DataQuery(StrEnum):
    """Query functions the problem-cause analysis may call."""

    BY_DOSAGE = "queryByDosage"
    WD = "queryWD"
    BY_PRODUCT_SPEC = "queryByProductSpec"
    PRICE_DIFFERENCE = "queryPriceDifference"
    PUBLIC_AWARENESS = "queryPublicAwareness"


# Queries kept in the manifest but not executed
DISABLED_QUERIES = frozenset(
    {DataQuery.BY_PRODUCT_SPEC, DataQuery.PRICE_DIFFERENCE, DataQuery.PUBLIC_AWARENESS}
)


class Trend(StrEnum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class FactorImpact(StrEnum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
