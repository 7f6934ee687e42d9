"""Business-advisor chat assistant.

Besides answering, the assistant watches for requests to regenerate the
analysis the user is looking at. Such a request marks that analysis's
cache key stale, which makes any loader currently showing it reload.
"""

import asyncio
import re
from dataclasses import dataclass, field

from loguru import logger

from pharma_insight.config import CHAT_MAX_TOKENS, REFRESH_KEYWORDS
from pharma_insight.models.enums import SubjectKind
from pharma_insight.models.schemas import AIAnalysis
from pharma_insight.services.analysis_cache import AnalysisCache, derive_key
from pharma_insight.services.llm_client import ChatCompletionClient

REFRESH_HINT = '已标记需要刷新分析。请点击分析报告右上角的"刷新分析"按钮，或切换产品/省份后会自动刷新。'
ERROR_REPLY = "抱歉，发送消息时出现错误。请稍后重试。"
EMPTY_REPLY = "抱歉，我无法生成回复。"

_PERIOD_RE = re.compile(r"(\d{4}-Q\d)")

SYSTEM_PROMPT = """你是晖致公司的AI业务顾问，专门为CEO和决策层提供策略规划支持。

## 公司背景
晖致是一家中国领先的医疗健康公司，覆盖血脂、血压、男科等多个疾病领域。公司按照内环、中环、外环的"三环"运营体系组织：
- **内环**：负责制定各类战略决策
- **中环**：负责沉淀运营数据及建设数字化系统
- **外环**：负责产品销售

全渠道团队以省为单位，负责面向医院、零售的销售，主要包括立普妥、络活喜、西乐葆、乐瑞卡、左洛复、怡诺思、可多华、爱宁达、利加隆、维固力十个产品。

## 业务特点
1. **渠道侧重**：以影响型医院为核心，带动周边服务型终端、零售终端的销售
2. **管理方针**：排除销量为王的概念，追求以患者为中心、以长期价值为导向的增长；考核以市场份额为基石，纳入渗透、解限、稳定分销、列名等过程指标
3. **动作逻辑**：先解限，再做深医院内渗透；未解限的医院保持稳定分销/列名

## 你的职责
1. **分析改进**：帮助用户改进预置的分析报告
2. **业务咨询**：回答关于晖致业务、产品、策略的问题
3. **策略建议**：基于"以患者为中心"和"解限-渗透-做广"的业务逻辑提供建议
4. **数据解读**：帮助理解数据背后的业务含义

## 回答风格
专业、深入、基于业务逻辑，提供可操作的建议和洞察。"""

_MOCK_REPLIES = (
    (
        ("解限", "渗透", "做广"),
        """基于晖致的"解限-渗透-做广"业务逻辑，我建议：

**解限阶段**：
- 重点关注影响型医院的集采准入情况
- 分析解限率变化的原因，可能是政策调整或竞品策略影响
- 建议访谈解限团队，了解具体障碍

**渗透阶段**：
- 评估学术推广活动的效果
- 关注核心影响型医院内的处方转化率

**做广阶段**：
- 对于未解限医院，确保稳定分销和列名

需要我针对具体产品或省份提供更详细的分析吗？""",
    ),
    (
        ("产品", "市场份额"),
        """从产品表现来看，建议关注以下几个方面：

1. **分子式份额 vs 分子式内份额**：如果分子式份额上升但分子式内份额下降，说明市场整体增长但产品竞争力在下降，需要分析竞品策略。

2. **解限率变化**：解限率下降可能影响市场准入，需要分析哪些省份/医院解限率下降明显，并制定针对性的解限策略。

3. **以患者为中心**：评估产品是否真正解决了患者需求。

需要我帮你深入分析某个具体产品吗？""",
    ),
    (
        ("省份", "区域"),
        """省份表现分析需要综合考虑多个维度：

1. **健康度评分**：综合市场份额、ROI、解限率、渗透率等指标
2. **核心维度分析**：市场份额反映整体竞争力，ROI评估投入产出效率，非立络占比反映产品结构健康度
3. **改进建议**：访谈区域经理，分析医院准入数据，评估是否需要调整市场投入策略

需要我针对某个具体省份提供分析吗？""",
    ),
    (
        ("策略", "建议"),
        """基于晖致的"以患者为中心"和"解限-渗透-做广"业务逻辑，策略建议如下：

**短期策略**：优先解决解限率下降的问题，加强影响型医院的学术推广。

**中期策略**：优化产品组合，建立更完善的Y=f(x)驱动因素监控体系。

**长期策略**：持续以患者为中心，完善"三环"运营体系。

需要我针对具体问题提供更详细的策略建议吗？""",
    ),
)

_MOCK_DEFAULT_REPLY = """我是晖致公司的AI业务顾问，可以帮助你：

1. **改进分析报告**：基于晖致的业务逻辑，提供更深入的洞察
2. **业务咨询**：回答关于产品、策略、运营的问题
3. **数据分析**：帮助理解数据背后的业务含义
4. **策略建议**：基于"解限-渗透-做广"逻辑提供建议

请告诉我你需要什么帮助？"""


@dataclass
class ChatReply:
    """Assistant messages for one user turn, plus the key marked stale (if any)."""

    messages: list[str] = field(default_factory=list)
    refresh_key: str | None = None

    @property
    def refresh_marked(self) -> bool:
        return self.refresh_key is not None


def mock_reply(user_message: str) -> str:
    lowered = user_message.lower()
    for keywords, reply in _MOCK_REPLIES:
        if any(kw in lowered for kw in keywords):
            return reply
    return _MOCK_DEFAULT_REPLY


def wants_refresh(user_message: str) -> bool:
    lowered = user_message.lower()
    return any(kw in lowered for kw in REFRESH_KEYWORDS)


def analysis_key(analysis: AIAnalysis) -> str:
    """Cache key of a displayed analysis.

    The period comes from the data summary ("产品X在2024-Q1的表现分析"),
    falling back to the analysis's own period field. Raises ValueError
    when neither yields a usable key.
    """
    match = _PERIOD_RE.search(analysis.data_summary)
    period = match.group(1) if match else analysis.period
    return derive_key(analysis.type, analysis.target_id, (period,))


def build_messages(
    history: list[dict[str, str]],
    current_page: str | None = None,
    analysis: AIAnalysis | None = None,
) -> list[dict[str, str]]:
    system = SYSTEM_PROMPT
    if current_page is not None or analysis is not None:
        system += f"\n\n当前上下文：用户正在查看{current_page or '未知页面'}。"
    messages = [{"role": "system", "content": system}]
    if analysis is not None:
        kind = "产品" if analysis.type == SubjectKind.PRODUCT else "省份"
        messages.append(
            {
                "role": "system",
                "content": (
                    f"当前分析数据：{analysis.target_name}的{kind}分析报告。"
                    f"关键发现：{'; '.join(analysis.key_findings)}"
                ),
            }
        )
    messages.extend(
        {"role": m.get("role", "user"), "content": m.get("content", "")}
        for m in history
        if m.get("role") != "system"
    )
    return messages


class ChatService:
    def __init__(self, client: ChatCompletionClient, cache: AnalysisCache) -> None:
        self._client = client
        self._cache = cache

    async def _answer(self, messages: list[dict[str, str]], user_message: str) -> str:
        if not self._client.is_configured:
            return mock_reply(user_message)
        message = await asyncio.to_thread(self._client.chat, messages, CHAT_MAX_TOKENS)
        if message is None:
            logger.warning("[chat] Completion failed, using canned reply")
            return mock_reply(user_message)
        return message.get("content") or EMPTY_REPLY

    async def reply(
        self,
        history: list[dict[str, str]],
        current_page: str | None = None,
        analysis: AIAnalysis | None = None,
    ) -> ChatReply:
        """Answer the last user message in *history*.

        When that message asks for a refresh and an analysis is on screen,
        its key is marked stale and a hint follows the answer. Unexpected
        failures produce an apology instead of an exception.
        """
        user_message = str(history[-1].get("content") or "") if history else ""
        result = ChatReply()
        try:
            result.messages.append(
                await self._answer(build_messages(history, current_page, analysis), user_message)
            )
        except Exception:
            logger.opt(exception=True).error("[chat] Failed to answer message")
            result.messages.append(ERROR_REPLY)
            return result

        if analysis is not None and wants_refresh(user_message):
            try:
                key = analysis_key(analysis)
            except ValueError as exc:
                logger.warning("[chat] Cannot derive key for refresh request: {}", exc)
                return result
            self._cache.mark_stale(key)
            result.refresh_key = key
            result.messages.append(REFRESH_HINT)
        return result
