"""Rule-based interpretation of a product's performance.

Four layers, each built from the previous one:

1. anomalies: threshold breaches on the product's indicators, plus
   hospital-level penetration problems found in the province drill-down
2. root causes: the provinces and hospitals behind each anomaly
3. risk points: anomalies grouped into business risks with solutions
4. macro recommendations: one per risk family plus a standing item

All functions are pure; no LLM call is involved.
"""

from pharma_insight.config import (
    COMPETITOR_RISE_HIGH,
    COMPETITOR_RISE_THRESHOLD,
    CORE_PENETRATION_DROP_THRESHOLD,
    DELIMIT_DROP_HIGH,
    DELIMIT_DROP_THRESHOLD,
    DELIMIT_TARGET_RATE,
    INTERNAL_SHARE_DROP_HIGH,
    INTERNAL_SHARE_DROP_THRESHOLD,
    LOW_MARKET_SHARE,
    LOW_PENETRATION_RATE,
)
from pharma_insight.models.enums import (
    EvidenceType,
    HospitalType,
    RecommendationCategory,
    Severity,
)
from pharma_insight.models.schemas import (
    AnomalyFinding,
    DataPoint,
    Evidence,
    InterpretationReport,
    MacroRecommendation,
    ProductPerformance,
    ProvinceDetail,
    RiskPoint,
    RootCause,
)
from pharma_insight.services.analysis_generator import fmt

DELIMIT_ANOMALY = "品牌整体解限率下降明显"
INTERNAL_SHARE_ANOMALY = "分子式内份额显著下降"
COMPETITOR_ANOMALY = "竞品份额上升明显"
CORE_HOSPITAL_ANOMALY = "核心医院渗透率下降"
HIGH_POTENTIAL_ANOMALY = "高潜医院渗透率偏低"


def detect_anomalies(
    product: ProductPerformance, provinces: list[ProvinceDetail]
) -> list[AnomalyFinding]:
    anomalies: list[AnomalyFinding] = []

    def next_id() -> str:
        return f"anomaly-{len(anomalies) + 1}"

    p = product
    if p.de_limit_rate_change < DELIMIT_DROP_THRESHOLD:
        related = [{"type": "内部数据", "source": "品牌解限率", "value": f"{fmt(p.de_limit_rate)}%"}]
        if provinces:
            avg = sum(pr.de_limit_rate for pr in provinces) / len(provinces)
            related.append({"type": "内部数据", "source": "平均省份解限率", "value": f"{avg:.1f}%"})
        anomalies.append(
            AnomalyFinding(
                id=next_id(),
                type="indicator",
                severity=(
                    Severity.HIGH
                    if abs(p.de_limit_rate_change) > DELIMIT_DROP_HIGH
                    else Severity.MEDIUM
                ),
                title=DELIMIT_ANOMALY,
                description=(
                    f"{p.product_name}整体解限率从{p.de_limit_rate - p.de_limit_rate_change:.1f}%"
                    f"下降至{p.de_limit_rate:.1f}%，下降{abs(p.de_limit_rate_change):.1f}%，"
                    "可能影响市场准入"
                ),
                data_point=DataPoint(
                    label="整体解限率",
                    value=f"{p.de_limit_rate:.1f}",
                    change=p.de_limit_rate_change,
                    unit="%",
                ),
                related_data=related,
            )
        )

    if p.molecule_internal_share_change < INTERNAL_SHARE_DROP_THRESHOLD:
        anomalies.append(
            AnomalyFinding(
                id=next_id(),
                type="indicator",
                severity=(
                    Severity.HIGH
                    if abs(p.molecule_internal_share_change) > INTERNAL_SHARE_DROP_HIGH
                    else Severity.MEDIUM
                ),
                title=INTERNAL_SHARE_ANOMALY,
                description=(
                    f"分子式份额上升{fmt(p.molecule_share_change)}%，"
                    f"但分子式内份额下降{fmt(abs(p.molecule_internal_share_change))}%，"
                    "表明产品竞争力下降"
                ),
                data_point=DataPoint(
                    label="分子式内份额",
                    value=f"{p.molecule_internal_share:.1f}",
                    change=p.molecule_internal_share_change,
                    unit="%",
                ),
                related_data=[
                    {"type": "外部数据", "source": "分子式份额", "value": f"{fmt(p.molecule_share)}%"},
                    {
                        "type": "外部数据",
                        "source": "分子式内份额",
                        "value": f"{fmt(p.molecule_internal_share)}%",
                    },
                ],
            )
        )

    if p.competitor_share_change > COMPETITOR_RISE_THRESHOLD:
        anomalies.append(
            AnomalyFinding(
                id=next_id(),
                type="indicator",
                severity=(
                    Severity.HIGH
                    if p.competitor_share_change > COMPETITOR_RISE_HIGH
                    else Severity.MEDIUM
                ),
                title=COMPETITOR_ANOMALY,
                description=(
                    f"竞品份额从{p.competitor_share - p.competitor_share_change:.1f}%"
                    f"上升至{fmt(p.competitor_share)}%，上升{p.competitor_share_change:.1f}%，竞争加剧"
                ),
                data_point=DataPoint(
                    label="竞品份额",
                    value=f"{p.competitor_share:.1f}",
                    change=p.competitor_share_change,
                    unit="%",
                ),
                related_data=[
                    {"type": "外部数据", "source": "竞品份额", "value": f"{fmt(p.competitor_share)}%"},
                    {
                        "type": "外部数据",
                        "source": "分子式内份额",
                        "value": f"{fmt(p.molecule_internal_share)}%",
                    },
                ],
            )
        )

    for province in provinces:
        for h in province.hospitals:
            if (
                h.type == HospitalType.CORE
                and h.penetration_rate_change < CORE_PENETRATION_DROP_THRESHOLD
            ):
                anomalies.append(
                    AnomalyFinding(
                        id=next_id(),
                        type="hospital",
                        severity=Severity.HIGH,
                        title=CORE_HOSPITAL_ANOMALY,
                        description=(
                            f"{province.province_name}{h.hospital_name}渗透率下降"
                            f"{abs(h.penetration_rate_change):.1f}%，降至{h.penetration_rate:.1f}%"
                        ),
                        data_point=DataPoint(
                            label="渗透率",
                            value=f"{h.penetration_rate:.1f}",
                            change=h.penetration_rate_change,
                            unit="%",
                        ),
                        category="hospital",
                        location={"province": province.province_name, "hospital": h.hospital_name},
                    )
                )
            elif (
                h.type == HospitalType.HIGH_POTENTIAL
                and h.penetration_rate < LOW_PENETRATION_RATE
                and h.penetration_rate_change < 0
            ):
                anomalies.append(
                    AnomalyFinding(
                        id=next_id(),
                        type="hospital",
                        severity=Severity.MEDIUM,
                        title=HIGH_POTENTIAL_ANOMALY,
                        description=(
                            f"{province.province_name}{h.hospital_name}渗透率仅"
                            f"{h.penetration_rate:.1f}%，且仍在下降"
                        ),
                        data_point=DataPoint(
                            label="渗透率",
                            value=f"{h.penetration_rate:.1f}",
                            change=h.penetration_rate_change,
                            unit="%",
                        ),
                        category="hospital",
                        location={"province": province.province_name, "hospital": h.hospital_name},
                    )
                )

    return anomalies


def _delimit_causes(anomaly: AnomalyFinding, provinces: list[ProvinceDetail]) -> list[RootCause]:
    declining = sorted(
        (
            pr
            for pr in provinces
            if pr.de_limit_rate < DELIMIT_TARGET_RATE and (pr.de_limit_rate_change or 0) < -2
        ),
        key=lambda pr: pr.de_limit_rate,
    )[:3]
    if not declining:
        return []

    worst = declining[0]
    change = worst.de_limit_rate_change or 0
    causes = [
        RootCause(
            id="",
            anomaly_id=anomaly.id,
            cause=(
                f"{worst.province_name}解限率下降尤其多，从{worst.de_limit_rate - change:.1f}%"
                f"下降至{worst.de_limit_rate:.1f}%，可能由于集采政策影响、医院目录调整或竞品替代策略"
            ),
            evidence=[
                Evidence(
                    type=EvidenceType.DATA,
                    source="省份解限率数据",
                    description=(
                        f"{worst.province_name}解限率{worst.de_limit_rate:.1f}%，"
                        f"下降{abs(change):.1f}%"
                    ),
                    data_point="低于平均水平",
                ),
                Evidence(
                    type=EvidenceType.DATA,
                    source="健康度评分",
                    description=f"{worst.province_name}健康度评分{fmt(worst.health_score)}分，低于平均水平",
                ),
                Evidence(
                    type=EvidenceType.EXTERNAL,
                    source="政策信息",
                    description="第七批国家集采可能影响该省份医院准入",
                ),
            ],
            confidence=Severity.HIGH,
        )
    ]
    if len(declining) > 1:
        others = "、".join(pr.province_name for pr in declining[1:])
        causes.append(
            RootCause(
                id="",
                anomaly_id=anomaly.id,
                cause=f"此外，{others}等省份也出现解限率下降，需要重点关注",
                evidence=[
                    Evidence(
                        type=EvidenceType.DATA,
                        source="省份解限率数据",
                        description=f"多个省份解限率低于{fmt(DELIMIT_TARGET_RATE)}%",
                    )
                ],
                confidence=Severity.MEDIUM,
            )
        )
    return causes


def _internal_share_causes(
    anomaly: AnomalyFinding, provinces: list[ProvinceDetail]
) -> list[RootCause]:
    low = sorted(
        (pr for pr in provinces if pr.market_share < LOW_MARKET_SHARE),
        key=lambda pr: pr.market_share,
    )[:3]
    if not low:
        return []
    names = "、".join(pr.province_name for pr in low)
    return [
        RootCause(
            id="",
            anomaly_id=anomaly.id,
            cause=(
                f"分子式内份额下降主要集中在{names}等省份，这些省份市场份额较低，"
                "可能由于价格策略、渠道覆盖或品牌影响力问题"
            ),
            evidence=[
                Evidence(
                    type=EvidenceType.DATA,
                    source="省份市场份额",
                    description="、".join(f"{pr.province_name}{pr.market_share:.1f}%" for pr in low),
                ),
                Evidence(
                    type=EvidenceType.EXTERNAL,
                    source="市场分析",
                    description="竞品可能在这些省份采取了更激进的定价或推广策略",
                ),
            ],
            confidence=Severity.HIGH,
        )
    ]


def _competitor_causes(anomaly: AnomalyFinding) -> list[RootCause]:
    return [
        RootCause(
            id="",
            anomaly_id=anomaly.id,
            cause="竞品份额上升可能由于竞品采取了更激进的定价策略、加强了学术推广或提升了渠道覆盖",
            evidence=[
                Evidence(
                    type=EvidenceType.DATA,
                    source="市场份额数据",
                    description=f"竞品份额上升{anomaly.data_point.change or 0:.1f}%",
                ),
                Evidence(
                    type=EvidenceType.EXTERNAL,
                    source="竞品动态",
                    description="竞品可能加大了市场投入和推广力度",
                ),
            ],
            confidence=Severity.MEDIUM,
        )
    ]


def _high_potential_cause(province: ProvinceDetail, anomaly_id: str) -> RootCause | None:
    hospitals = [h for h in province.hospitals if h.type == HospitalType.HIGH_POTENTIAL]
    if not hospitals:
        return None
    avg = sum(h.penetration_rate for h in hospitals) / len(hospitals)
    declining = sum(1 for h in hospitals if h.penetration_rate_change < 0)
    if avg >= LOW_PENETRATION_RATE and declining <= len(hospitals) * 0.5:
        return None

    examples = [h.hospital_name for h in hospitals if h.penetration_rate < LOW_PENETRATION_RATE][:2]
    example_text = "、".join(examples) if examples else "多家医院"
    return RootCause(
        id="",
        anomaly_id=anomaly_id,
        cause=(
            f"{province.province_name}高潜医院整体表现不佳，平均渗透率仅{avg:.1f}%，"
            f"{declining}家医院出现下降。例如：{example_text}渗透率低于"
            f"{fmt(LOW_PENETRATION_RATE)}%，未发挥增长潜力"
        ),
        evidence=[
            Evidence(
                type=EvidenceType.DATA,
                source="高潜医院平均渗透率",
                description=f"{province.province_name}高潜医院平均渗透率{avg:.1f}%",
            ),
            Evidence(
                type=EvidenceType.DATA,
                source="医院示例",
                description=(
                    f"{'、'.join(examples)}等医院渗透率低于{fmt(LOW_PENETRATION_RATE)}%"
                    if examples
                    else "多家高潜医院表现不佳"
                ),
            ),
            Evidence(
                type=EvidenceType.INTERNAL,
                source="资源分配",
                description="该省份高潜医院可能未获得足够的市场投入和人员支持",
            ),
        ],
        confidence=Severity.MEDIUM,
    )


def find_root_causes(
    anomalies: list[AnomalyFinding], provinces: list[ProvinceDetail]
) -> list[RootCause]:
    """Drill indicator anomalies down to provinces and hospitals."""
    causes: list[RootCause] = []
    for anomaly in anomalies:
        if anomaly.type != "indicator":
            continue
        if "解限率" in anomaly.title:
            causes.extend(_delimit_causes(anomaly, provinces))
        elif "分子式内份额" in anomaly.title:
            causes.extend(_internal_share_causes(anomaly, provinces))
        elif "竞品份额" in anomaly.title:
            causes.extend(_competitor_causes(anomaly))

    # Attach hospital-level causes to the first share or de-limit anomaly
    anchor = next(
        (a.id for a in anomalies if "解限率" in a.title or "份额" in a.title),
        "",
    )
    for province in provinces:
        cause = _high_potential_cause(province, anchor)
        if cause is not None:
            causes.append(cause)

    for i, cause in enumerate(causes, start=1):
        cause.id = f"cause-{i}"
    return causes


_RISK_TEMPLATES = {
    "delimit": {
        "title": "市场准入风险：多省份解限率下降",
        "severity": Severity.HIGH,
        "description": "{n}个省份出现解限率显著下降，可能影响产品市场准入和销量",
        "possible_causes": [
            {
                "cause": "集采政策影响导致医院目录调整",
                "evidence": ["第七批国家集采政策", "医院药品目录调整通知"],
                "confidence": Severity.HIGH,
            },
            {
                "cause": "竞品替代策略加强",
                "evidence": ["竞品市场份额上升", "竞品价格优势"],
                "confidence": Severity.MEDIUM,
            },
        ],
        "solutions": {
            "short_term": [
                "立即与解限率下降省份的医院沟通，了解具体障碍",
                "加强解限团队投入，优先解决高价值医院准入问题",
                "评估价格策略，提升产品竞争力",
            ],
            "long_term": [
                "建立更完善的医院准入监控体系",
                "加强与重点医院的长期合作关系",
                "优化产品组合，提升整体竞争力",
            ],
        },
    },
    "core_hospital": {
        "title": "核心医院渗透率下降风险",
        "severity": Severity.HIGH,
        "description": "{n}家核心医院出现渗透率显著下降，可能影响整体市场份额",
        "possible_causes": [
            {
                "cause": "医生处方习惯变化",
                "evidence": ["核心医院渗透率数据", "医生调研反馈"],
                "confidence": Severity.MEDIUM,
            },
            {
                "cause": "竞品学术推广加强",
                "evidence": ["竞品市场活动数据", "医院学术活动记录"],
                "confidence": Severity.MEDIUM,
            },
        ],
        "solutions": {
            "short_term": [
                "加强核心医院的学术推广活动",
                "与关键医生建立更紧密的关系",
                "提供更有针对性的产品教育",
            ],
            "long_term": [
                "建立核心医院KOL关系网络",
                "持续跟踪医生处方行为变化",
                "优化产品在核心医院的定位",
            ],
        },
    },
    "high_potential": {
        "title": "高潜医院增长潜力未发挥",
        "severity": Severity.MEDIUM,
        "description": "{n}家高潜医院表现不佳，未发挥增长潜力",
        "possible_causes": [
            {
                "cause": "资源投入不足",
                "evidence": ["市场投入数据", "人员配置情况"],
                "confidence": Severity.HIGH,
            },
            {
                "cause": "医生教育覆盖不够",
                "evidence": ["学术活动数据", "医生认知调研"],
                "confidence": Severity.MEDIUM,
            },
        ],
        "solutions": {
            "short_term": [
                "增加高潜医院的市场投入",
                "加强医生教育和学术推广",
                "优化销售团队配置",
            ],
            "long_term": [
                "建立高潜医院识别和培育机制",
                "制定针对性的市场开发策略",
                "建立长期合作关系",
            ],
        },
    },
    "competitiveness": {
        "title": "产品竞争力下降风险",
        "severity": Severity.HIGH,
        "description": "分子式内份额下降表明产品在同类产品中竞争力下降",
        "possible_causes": [
            {
                "cause": "价格竞争力下降",
                "evidence": ["价格对比数据", "市场份额变化"],
                "confidence": Severity.HIGH,
            },
            {
                "cause": "渠道覆盖不足",
                "evidence": ["渠道覆盖数据", "分销网络分析"],
                "confidence": Severity.MEDIUM,
            },
        ],
        "solutions": {
            "short_term": [
                "评估并优化价格策略",
                "加强重点渠道的覆盖",
                "提升产品差异化优势",
            ],
            "long_term": [
                "建立更完善的渠道管理体系",
                "优化产品组合和定位",
                "加强品牌建设",
            ],
        },
    },
}


def assess_risks(
    product: ProductPerformance, anomalies: list[AnomalyFinding]
) -> list[RiskPoint]:
    """Group anomalies into risk points."""
    groups = [
        ("delimit", [a for a in anomalies if "解限率" in a.title]),
        ("core_hospital", [a for a in anomalies if "核心医院" in a.title]),
        ("high_potential", [a for a in anomalies if "高潜医院" in a.title]),
    ]
    if product.molecule_internal_share_change < INTERNAL_SHARE_DROP_THRESHOLD:
        groups.append(
            ("competitiveness", [a for a in anomalies if "分子式内份额" in a.title])
        )

    risks: list[RiskPoint] = []
    for family, related in groups:
        if not related and family != "competitiveness":
            continue
        template = _RISK_TEMPLATES[family]
        risks.append(
            RiskPoint(
                id=f"risk-{len(risks) + 1}",
                title=template["title"],
                severity=template["severity"],
                description=template["description"].format(n=len(related)),
                related_anomalies=[a.id for a in related],
                possible_causes=[dict(c) for c in template["possible_causes"]],
                solutions={k: list(v) for k, v in template["solutions"].items()},
            )
        )
    return risks


def recommend(risks: list[RiskPoint]) -> list[MacroRecommendation]:
    """Turn risk points into macro recommendations."""
    recs: list[MacroRecommendation] = []

    def add(category, title, description, priority, related):
        recs.append(
            MacroRecommendation(
                id=f"rec-{len(recs) + 1}",
                category=category,
                title=title,
                description=description,
                priority=priority,
                related_risk_points=related,
            )
        )

    delimit = [r.id for r in risks if "解限率" in r.title]
    penetration = [r.id for r in risks if "渗透率" in r.title or "高潜" in r.title]
    competitiveness = [r.id for r in risks if "竞争力" in r.title]

    if delimit:
        add(
            RecommendationCategory.STRATEGY,
            "建立系统化的医院准入管理体系",
            "针对解限率下降问题，建议建立更完善的医院准入监控、预警和应对机制，确保市场准入稳定",
            Severity.HIGH,
            delimit,
        )
    if any("渗透率" in r.title for r in risks):
        add(
            RecommendationCategory.OPERATION,
            "优化核心医院和高潜医院的资源配置",
            "基于核心医院渗透率下降和高潜医院未做好的问题，建议重新评估和优化资源配置，确保重点医院获得足够支持",
            Severity.HIGH,
            penetration,
        )
    if competitiveness:
        add(
            RecommendationCategory.STRATEGY,
            "提升产品整体竞争力",
            "针对产品竞争力下降，建议从价格策略、渠道覆盖、品牌建设等多个维度全面提升产品竞争力",
            Severity.HIGH,
            competitiveness,
        )
    add(
        RecommendationCategory.ORGANIZATION,
        "加强数据驱动的决策机制",
        "建议建立更完善的数据监控和分析体系，及时发现异常值，快速响应市场变化",
        Severity.MEDIUM,
        [r.id for r in risks],
    )
    return recs


def summarize(
    product: ProductPerformance,
    anomalies: list[AnomalyFinding],
    causes: list[RootCause],
    risks: list[RiskPoint],
) -> dict[str, str]:
    """Four-line executive summary shown above the detailed layers."""
    if product.molecule_internal_share_change < INTERNAL_SHARE_DROP_THRESHOLD:
        overall = (
            f"{product.product_name}分子式内份额下降"
            f"{abs(product.molecule_internal_share_change):.1f}%，产品竞争力下降。"
        )
    else:
        trend = "稳定" if product.molecule_share_change > 0 else "需要关注"
        overall = f"{product.product_name}整体表现{trend}。"
    return {
        "overall_performance": overall,
        "main_risks": "；".join(a.title for a in anomalies[:2]) or "暂无重大风险",
        "key_finding": causes[0].cause if causes else "需要进一步分析",
        "suggestions": (
            "；".join(risks[0].solutions["short_term"][:2]) if risks else "持续监控数据变化"
        ),
    }


def interpret(product: ProductPerformance, provinces: list[ProvinceDetail]) -> InterpretationReport:
    anomalies = detect_anomalies(product, provinces)
    causes = find_root_causes(anomalies, provinces)
    risks = assess_risks(product, anomalies)
    return InterpretationReport(
        anomalies=anomalies,
        root_causes=causes,
        risk_points=risks,
        recommendations=recommend(risks),
        summary=summarize(product, anomalies, causes, risks),
    )
