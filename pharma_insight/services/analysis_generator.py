"""Product, province and target-plan analyses backed by the LLM client.

Each analysis is one chat-completion call wrapped in deterministic
scaffolding: key findings, risk alerts, citations and suggested actions
come from threshold rules over the input record, and only the free-text
interpretation comes from the model. Without an API key, or when the
call fails, a canned interpretation is used instead.
"""

import asyncio
import re
from typing import Any

from loguru import logger

from pharma_insight.config import (
    ANALYSIS_MAX_TOKENS,
    COMPETITOR_RISE_THRESHOLD,
    DELIMIT_DROP_THRESHOLD,
    DELIMIT_TARGET_RATE,
    HEALTH_SCORE_FLOOR,
    INTERNAL_SHARE_DROP_THRESHOLD,
)
from pharma_insight.models.enums import Severity, SubjectKind
from pharma_insight.models.schemas import (
    AIAnalysis,
    Citation,
    ProductPerformance,
    ProvincePerformance,
    RiskAlert,
    TargetPlan,
    TargetPlanRequest,
)
from pharma_insight.services.llm_client import ChatCompletionClient
from pharma_insight.services.target_plan_service import plan_targets

_PRODUCT_SYSTEM = (
    "你是一个专业的医药行业业务分析师，专注于晖致公司的产品表现分析。\n"
    "你需要基于\"以患者为中心\"和\"解限-渗透-做广\"的业务逻辑进行分析。\n"
    "请提供专业、深入的分析，包括数据解读、风险识别和行动建议。"
)

_PRODUCT_PROMPT_TEMPLATE = (
    "请分析以下产品的市场表现数据：\n\n"
    "产品名称：{name}\n"
    "分子式：{formula}\n"
    "报告周期：{period}\n\n"
    "外部数据：\n"
    "- 分子式份额：{molecule_share}% (变化：{molecule_share_change}%)\n"
    "- 分子式内份额：{internal_share}% (变化：{internal_share_change}%)\n"
    "- 竞品份额：{competitor_share}% (变化：{competitor_share_change}%)\n\n"
    "内部数据：\n"
    "- 解限率：{de_limit_rate}% (变化：{de_limit_rate_change}%)\n\n"
    "请提供：\n"
    "1. \"就数论数\"：识别关键变化和风险点\n"
    "2. \"数据解读\"：分析可能原因，并提供进一步锁定问题的建议（包括拆解问题角度、可访谈对象等）\n"
    "3. 结合晖致\"三环\"运营体系，提供基于\"解限-渗透-做广\"逻辑的建议"
)

_PROVINCE_SYSTEM = (
    "你是一个专业的医药行业业务分析师，专注于晖致公司的区域市场分析。\n"
    "你需要基于\"以患者为中心\"和\"解限-渗透-做广\"的业务逻辑进行分析。\n"
    "请提供专业、深入的分析，包括健康度评估、原因分析和改进建议。"
)

_PROVINCE_PROMPT_TEMPLATE = (
    "请分析以下省份的市场表现数据：\n\n"
    "省份名称：{name}\n"
    "报告周期：{period}\n\n"
    "核心维度：\n"
    "- 市场份额：{market_share}%\n"
    "- ROI：{roi}\n"
    "- 非立络占比：{non_lilu_ratio}%\n\n"
    "核心指标：\n"
    "- 解限率：{de_limit_rate}%\n"
    "- 渗透率：{penetration_rate}%\n\n"
    "健康度评分：{health_score}/100 ({health_level})\n\n"
    "请提供：\n"
    "1. \"就数论数\"：评估该省份的健康度，识别表现优异和不理想的维度\n"
    "2. \"数据解读\"：分析省份表现的潜在原因\n"
    "3. 提供改进建议，包括需要进一步分析的角度和可访谈的对象"
)

_TARGET_PLAN_SYSTEM = (
    "你是一个专业的业务规划师，负责基于历史数据、环境变化等因素，规划指标的未来目标值。\n"
    "请分析指标基线、历史趋势、省份方差、环境变化等因素，规划合理的全国和分省目标值。\n"
    "请说明规划依据、置信度和风险提示。"
)

_TARGET_PLAN_PROMPT_TEMPLATE = (
    "指标名称：{name}\n"
    "指标描述：{description}\n\n"
    "指标基线：\n"
    "- 全国当前值：{current}\n"
    "- 全国历史平均值：{historical_avg}\n"
    "- 全国历史中位数：{historical_median}\n"
    "- 全国趋势：{trend}\n\n"
    "省份基线：\n{provinces}\n\n"
    "环境因素：\n{factors}\n\n"
    "{sales_growth}"
    "请规划未来目标值（全国和分省），并说明规划依据。"
)

_MOCK_PRODUCT_RESPONSE = """基于数据分析，该产品在分子式层面表现良好，但分子式内份额出现下降趋势。可能原因包括：
1. 竞品营销策略调整，加大了市场投入
2. 产品价格竞争力下降
3. 渠道覆盖不足，特别是在下沉市场
4. 医生处方习惯发生变化

建议进一步分析：
- 分省份拆解数据，识别问题集中区域
- 访谈重点医院的关键医生，了解处方决策因素
- 对比竞品的市场活动时间线
- 分析价格变化对市场份额的影响"""

_MOCK_PROVINCE_RESPONSE = """该省份在多个核心维度表现不理想：
1. 市场份额低于平均水平，可能与竞品在该区域投入较大有关
2. ROI偏低，说明投入产出效率有待提升
3. 解限率和渗透率均低于目标值，存在市场开发不足的问题

可能原因：
- 区域团队能力建设不足
- 医院准入进展缓慢
- 医生教育覆盖不够
- 竞品在该区域有较强的先发优势

建议行动：
- 访谈区域经理和重点医院代表，了解具体障碍
- 分析该省份的医院准入数据
- 评估是否需要增加市场投入或调整策略"""

_MOCK_TARGET_PLAN_RESPONSE = """目标值规划基于指标的历史趋势与各省基线：
1. 趋势上升的指标按较高增速规划，趋势平稳的按温和增速规划，趋势下降的按持平规划
2. 当前值低于历史平均的地区预留回归空间
3. 历史波动较大的省份目标需结合一线反馈人工校准

建议在季度复盘时对照实际完成情况调整目标。"""

_MOCK_DEFAULT_RESPONSE = "AI分析结果生成中..."

# keyword in the interpretation -> reason label
_REASON_KEYWORDS = {
    "竞品": "竞品策略调整",
    "价格": "价格竞争力变化",
    "渠道": "渠道覆盖不足",
    "准入": "医院准入进展缓慢",
    "团队": "区域团队能力建设不足",
}

_SUGGESTED_ACTIONS = {
    "problem_breakdown": [
        "分省份拆解数据，识别问题集中区域",
        "分析时间序列趋势，识别变化拐点",
        "对比竞品表现，找出差距原因",
    ],
    "interview_targets": [
        "重点医院的关键医生",
        "区域经理和销售代表",
        "市场准入负责人",
    ],
    "data_analysis": [
        "分析价格变化对市场份额的影响",
        "评估渠道覆盖和渗透情况",
        "对比竞品的市场活动时间线",
    ],
}

_PARAGRAPH_RE = re.compile(r"\n\s*\n+")


def fmt(value: float) -> str:
    """Render a number without a trailing ``.0``."""
    return f"{value:g}"


def _signed(value: float) -> str:
    return f"+{fmt(value)}" if value > 0 else fmt(value)


def mock_response(kind: SubjectKind | None) -> str:
    """Canned interpretation used when no model reply is available."""
    if kind == SubjectKind.PRODUCT:
        return _MOCK_PRODUCT_RESPONSE
    if kind == SubjectKind.PROVINCE:
        return _MOCK_PROVINCE_RESPONSE
    if kind == SubjectKind.TARGET_PLAN:
        return _MOCK_TARGET_PLAN_RESPONSE
    return _MOCK_DEFAULT_RESPONSE


# ── Threshold rules ───────────────────────────────────────────────────────


def extract_key_findings(record: ProductPerformance | ProvincePerformance) -> list[str]:
    findings: list[str] = []
    if isinstance(record, ProductPerformance):
        if record.molecule_internal_share_change < INTERNAL_SHARE_DROP_THRESHOLD:
            findings.append(
                f"分子式内份额下降{fmt(abs(record.molecule_internal_share_change))}%，需要重点关注"
            )
        if record.de_limit_rate_change < DELIMIT_DROP_THRESHOLD:
            findings.append(
                f"解限率下降{fmt(abs(record.de_limit_rate_change))}%，可能影响市场准入"
            )
    elif record.health_score and record.health_score < HEALTH_SCORE_FLOOR:
        findings.append(f"健康度评分{fmt(record.health_score)}分，低于平均水平，需要重点关注")
    return findings or ["整体表现稳定，但仍有优化空间"]


def product_risk_alerts(product: ProductPerformance) -> list[RiskAlert]:
    alerts: list[RiskAlert] = []
    if (
        product.molecule_share_change > 0
        and product.molecule_internal_share_change < INTERNAL_SHARE_DROP_THRESHOLD
    ):
        drop = abs(product.molecule_internal_share_change)
        alerts.append(
            RiskAlert(
                subject_id=product.product_id,
                subject_name=product.product_name,
                risk_level=Severity.HIGH,
                risk_type="分子式内份额下降",
                description=(
                    f"分子式份额上升{fmt(product.molecule_share_change)}%，"
                    f"但分子式内份额下降{fmt(drop)}%"
                ),
                indicators=["分子式内份额", "分子式份额"],
                change_magnitude=drop,
            )
        )
    if product.de_limit_rate_change < DELIMIT_DROP_THRESHOLD:
        drop = abs(product.de_limit_rate_change)
        alerts.append(
            RiskAlert(
                subject_id=product.product_id,
                subject_name=product.product_name,
                risk_level=Severity.HIGH,
                risk_type="解限率下降",
                description=f"解限率下降{fmt(drop)}%，可能影响市场准入",
                indicators=["解限率"],
                change_magnitude=drop,
            )
        )
    if product.competitor_share_change > COMPETITOR_RISE_THRESHOLD:
        alerts.append(
            RiskAlert(
                subject_id=product.product_id,
                subject_name=product.product_name,
                risk_level=Severity.MEDIUM,
                risk_type="竞品份额上升",
                description=f"竞品份额上升{fmt(product.competitor_share_change)}%，竞争加剧",
                indicators=["竞品份额"],
                change_magnitude=product.competitor_share_change,
            )
        )
    return alerts


def province_risk_alerts(province: ProvincePerformance) -> list[RiskAlert]:
    alerts: list[RiskAlert] = []
    if province.health_score < HEALTH_SCORE_FLOOR:
        alerts.append(
            RiskAlert(
                subject_id=province.province_id,
                subject_name=province.province_name,
                risk_level=Severity.HIGH,
                risk_type="健康度评分偏低",
                description=f"健康度评分{fmt(province.health_score)}分，低于平均水平",
                indicators=["健康度评分", "市场份额", "ROI", "解限率"],
                change_magnitude=HEALTH_SCORE_FLOOR - province.health_score,
            )
        )
    if province.de_limit_rate < DELIMIT_TARGET_RATE:
        alerts.append(
            RiskAlert(
                subject_id=province.province_id,
                subject_name=province.province_name,
                risk_level=Severity.MEDIUM,
                risk_type="解限率偏低",
                description=f"解限率{fmt(province.de_limit_rate)}%，低于目标值",
                indicators=["解限率"],
                change_magnitude=DELIMIT_TARGET_RATE - province.de_limit_rate,
            )
        )
    return alerts


def extract_reasons(interpretation: str) -> list[str]:
    """Map keywords found in the model's text to reason labels."""
    reasons = [label for kw, label in _REASON_KEYWORDS.items() if kw in interpretation]
    return reasons or ["需要进一步分析确定"]


def suggested_actions() -> dict[str, list[str]]:
    return {k: list(v) for k, v in _SUGGESTED_ACTIONS.items()}


def product_related_info(product: ProductPerformance) -> list[dict[str, str]]:
    """External context items for a product (at most four)."""
    formula = product.molecule_formula
    info = [
        {
            "source": "政府文件",
            "content": f"国家医保局发布{product.period}医保目录调整通知，涉及{formula}类药物",
            "relevance": "可能影响产品市场准入和价格策略",
        },
        {
            "source": "行业新闻",
            "content": f"竞品公司宣布加大{formula}市场投入，预计投入增长30%",
            "relevance": "可能解释竞品份额上升的原因",
        },
    ]
    if product.molecule_internal_share_change < INTERNAL_SHARE_DROP_THRESHOLD:
        info.append(
            {
                "source": "市场分析",
                "content": (
                    f"{product.product_name}在{formula}分子式内份额持续下降，"
                    "可能与竞品策略调整或价格竞争有关"
                ),
                "relevance": "需要重点关注分子式内竞争态势",
            }
        )
    if product.de_limit_rate_change < DELIMIT_DROP_THRESHOLD:
        info.append(
            {
                "source": "医院准入",
                "content": (
                    f"{product.product_name}解限率下降明显，"
                    "可能与集采政策、医院目录调整或竞品替代有关"
                ),
                "relevance": "解限率下降直接影响市场准入，需要优先解决",
            }
        )
    if product.competitor_share_change > COMPETITOR_RISE_THRESHOLD:
        info.append(
            {
                "source": "竞争情报",
                "content": f"竞品在{formula}市场的份额快速上升，可能采取了更激进的定价或推广策略",
                "relevance": "需要分析竞品策略并制定应对措施",
            }
        )
    return info[:4]


def province_related_info(province: ProvincePerformance) -> list[dict[str, str]]:
    return [
        {
            "source": "区域政策",
            "content": f"{province.province_name}发布新的药品采购政策，强调性价比评估",
            "relevance": "可能影响产品在该省份的市场表现",
        },
        {
            "source": "市场动态",
            "content": f"{province.province_name}主要医院完成新一轮药品招标",
            "relevance": "可能影响产品准入和市场份额",
        },
    ]


def product_citations(
    product: ProductPerformance, related_info: list[dict[str, str]]
) -> list[Citation]:
    citations: list[Citation] = []

    def add(type_: str, source: str, content: str, relevance: str, data_point: str | None = None):
        citations.append(
            Citation(
                id=f"cite-{len(citations) + 1}",
                type=type_,
                source=source,
                content=content,
                relevance=relevance,
                data_point=data_point,
            )
        )

    p = product
    if p.molecule_internal_share_change < INTERNAL_SHARE_DROP_THRESHOLD:
        drop = fmt(abs(p.molecule_internal_share_change))
        before = fmt(p.molecule_internal_share - p.molecule_internal_share_change)
        add(
            "internal",
            "内部数据",
            f"分子式内份额从{before}%变化至{fmt(p.molecule_internal_share)}%，下降{drop}%",
            "分子式内份额下降表明产品在同类产品中的竞争力下降",
            f"分子式内份额下降{drop}%",
        )
    if p.de_limit_rate_change < DELIMIT_DROP_THRESHOLD:
        drop = fmt(abs(p.de_limit_rate_change))
        before = fmt(p.de_limit_rate - p.de_limit_rate_change)
        add(
            "internal",
            "内部数据",
            f"解限率从{before}%变化至{fmt(p.de_limit_rate)}%，下降{drop}%",
            "解限率下降直接影响市场准入，可能导致销量下降",
            f"解限率下降{drop}%",
        )
    if p.molecule_share_change > 0:
        rise = fmt(p.molecule_share_change)
        before = fmt(p.molecule_share - p.molecule_share_change)
        add(
            "external",
            "外部市场数据",
            f"分子式份额从{before}%变化至{fmt(p.molecule_share)}%，上升{rise}%",
            "分子式份额上升表明整体市场增长",
            f"分子式份额上升{rise}%",
        )
    if p.competitor_share_change > COMPETITOR_RISE_THRESHOLD:
        rise = fmt(p.competitor_share_change)
        before = fmt(p.competitor_share - p.competitor_share_change)
        add(
            "external",
            "外部市场数据",
            f"竞品份额从{before}%变化至{fmt(p.competitor_share)}%，上升{rise}%",
            "竞品份额上升表明竞争加剧，需要分析竞品策略",
            f"竞品份额上升{rise}%",
        )
    for item in related_info:
        add("external", item["source"], item["content"], item["relevance"])
    return citations


def province_citations(
    province: ProvincePerformance, related_info: list[dict[str, str]]
) -> list[Citation]:
    p = province
    citations = [
        Citation(
            id="cite-1",
            type="internal",
            source="内部数据",
            content=f"健康度评分：{fmt(p.health_score)}/100 ({p.health_level})",
            relevance="健康度评分综合反映省份整体表现",
            data_point=f"健康度评分{fmt(p.health_score)}分",
        ),
        Citation(
            id="cite-2",
            type="internal",
            source="内部数据",
            content=(
                f"市场份额：{fmt(p.market_share)}%，ROI：{fmt(p.roi)}，"
                f"解限率：{fmt(p.de_limit_rate)}%，渗透率：{fmt(p.penetration_rate)}%"
            ),
            relevance="核心维度数据反映省份在多个关键指标上的表现",
        ),
    ]
    for item in related_info:
        citations.append(
            Citation(
                id=f"cite-{len(citations) + 1}",
                type="external",
                source=item["source"],
                content=item["content"],
                relevance=item["relevance"],
            )
        )
    return citations


def interpretation_segments(text: str, citations: list[Citation]) -> list[dict[str, Any]]:
    """Split text into paragraphs and link each to the citations it mentions."""
    segments: list[dict[str, Any]] = []
    paragraphs = [p.strip() for p in _PARAGRAPH_RE.split(text) if p.strip()]
    for i, paragraph in enumerate(paragraphs):
        linked = [
            c.id
            for c in citations
            if (c.data_point and c.data_point in paragraph) or c.content[:20] in paragraph
        ]
        segments.append({"id": f"segment-{i}", "text": paragraph, "citations": linked})
    return segments


# ── Generator ─────────────────────────────────────────────────────────────


class AnalysisGenerator:
    """Builds ``AIAnalysis`` reports; used as the compute step of the loaders."""

    def __init__(self, client: ChatCompletionClient) -> None:
        self._client = client

    async def _interpret(self, kind: SubjectKind, system: str, prompt: str) -> str:
        text = await asyncio.to_thread(
            self._client.complete, system, prompt, ANALYSIS_MAX_TOKENS
        )
        if text is None:
            if self._client.is_configured:
                logger.warning("[analysis] LLM call failed, using canned interpretation")
            return mock_response(kind)
        return text

    async def analyze_product(self, product: ProductPerformance) -> AIAnalysis:
        prompt = _PRODUCT_PROMPT_TEMPLATE.format(
            name=product.product_name,
            formula=product.molecule_formula,
            period=product.period,
            molecule_share=fmt(product.molecule_share),
            molecule_share_change=_signed(product.molecule_share_change),
            internal_share=fmt(product.molecule_internal_share),
            internal_share_change=_signed(product.molecule_internal_share_change),
            competitor_share=fmt(product.competitor_share),
            competitor_share_change=_signed(product.competitor_share_change),
            de_limit_rate=fmt(product.de_limit_rate),
            de_limit_rate_change=_signed(product.de_limit_rate_change),
        )
        logger.info("[analysis] Product {} ({})", product.product_id, product.period)
        text = await self._interpret(SubjectKind.PRODUCT, _PRODUCT_SYSTEM, prompt)

        related = product_related_info(product)
        citations = product_citations(product, related)
        return AIAnalysis(
            type=SubjectKind.PRODUCT,
            target_id=product.product_id,
            target_name=product.product_name,
            period=product.period,
            data_summary=f"产品{product.product_name}在{product.period}的表现分析",
            key_findings=extract_key_findings(product),
            risk_alerts=product_risk_alerts(product),
            interpretation=text,
            interpretation_segments=interpretation_segments(text, citations),
            possible_reasons=extract_reasons(text),
            suggested_actions=suggested_actions(),
            related_info=related,
            citations=citations,
        )

    async def analyze_province(self, province: ProvincePerformance) -> AIAnalysis:
        prompt = _PROVINCE_PROMPT_TEMPLATE.format(
            name=province.province_name,
            period=province.period,
            market_share=fmt(province.market_share),
            roi=fmt(province.roi),
            non_lilu_ratio=fmt(province.non_lilu_ratio),
            de_limit_rate=fmt(province.de_limit_rate),
            penetration_rate=fmt(province.penetration_rate),
            health_score=fmt(province.health_score),
            health_level=province.health_level,
        )
        logger.info("[analysis] Province {} ({})", province.province_id, province.period)
        text = await self._interpret(SubjectKind.PROVINCE, _PROVINCE_SYSTEM, prompt)

        related = province_related_info(province)
        citations = province_citations(province, related)
        return AIAnalysis(
            type=SubjectKind.PROVINCE,
            target_id=province.province_id,
            target_name=province.province_name,
            period=province.period,
            data_summary=f"省份{province.province_name}在{province.period}的表现分析",
            key_findings=extract_key_findings(province),
            risk_alerts=province_risk_alerts(province),
            interpretation=text,
            interpretation_segments=interpretation_segments(text, citations),
            possible_reasons=extract_reasons(text),
            suggested_actions=suggested_actions(),
            related_info=related,
            citations=citations,
        )

    async def plan_targets(self, request: TargetPlanRequest) -> TargetPlan:
        provinces = "\n".join(
            f"- {p.province}: 当前值{fmt(p.current)}, 历史平均{fmt(p.historical_avg)}, "
            f"方差{fmt(p.variance)}, 趋势{p.trend}"
            for p in request.province_baselines
        )
        factors = "\n".join(
            f"- {f.factor}: {f.impact} - {f.description}" for f in request.environmental_factors
        )
        growth = request.national_sales_growth
        prompt = _TARGET_PLAN_PROMPT_TEMPLATE.format(
            name=request.indicator_name,
            description=request.description,
            current=fmt(request.current),
            historical_avg=fmt(request.historical_avg),
            historical_median=fmt(request.historical_median),
            trend=request.trend,
            provinces=provinces or "- 无",
            factors=factors or "- 无",
            sales_growth=f"全国销售增速目标：{fmt(growth)}%\n\n" if growth is not None else "",
        )
        logger.info("[analysis] Target plan {} (growth={})", request.indicator_id, growth)
        text = await self._interpret(SubjectKind.TARGET_PLAN, _TARGET_PLAN_SYSTEM, prompt)
        return plan_targets(request, interpretation=text)
