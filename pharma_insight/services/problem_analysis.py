"""Scissors-gap and problem-cause analysis over retail market data.

Market data arrives as a list of row dicts (dimension values keyed by
column key, plus a numeric ``value``) together with the dimension
configs that label those columns. Query functions locate columns by
label keywords, so the same code works for Chinese and English sheets.

The problem-cause analysis lets the model call ``queryByDosage`` and
``queryWD`` in a function-calling loop before it writes its answer.
"""

import json
import re
from typing import Any

import polars as pl
from loguru import logger

from pharma_insight.config import (
    MAX_TOOL_ITERATIONS,
    PROBLEM_CAUSES_MAX_TOKENS,
    SCISSORS_GAPS_MAX_TOKENS,
)
from pharma_insight.models.enums import DISABLED_QUERIES, DataQuery
from pharma_insight.services.llm_client import ChatCompletionClient

Row = dict[str, Any]
Dimension = dict[str, str]  # {"key": ..., "label": ...}

DOSAGE_KEYWORDS = ("剂量", "dosage", "mg")
BRAND_KEYWORDS = ("品牌", "brand")
WD_KEYWORDS = ("WD", "wd", "分销", "分销率", "加权铺货率")
PACKAGE_KEYWORDS = ("包装", "package", "规格")

_NUMBER_RE = re.compile(r"\d+")
_FENCED_JSON_RE = re.compile(r"```json\s*([\s\S]*?)\s*```")
_FENCED_RE = re.compile(r"```\s*([\s\S]*?)\s*```")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

TOOL_MANIFEST = [
    {
        "name": "analyze_scissors_gaps",
        "description": "分析市场数据中的剪刀差现象，识别品牌表现中的关键问题",
    },
    {
        "name": "analyze_problem_causes",
        "description": "深入分析剪刀差背后的原因，包括四个维度的分析",
    },
    {
        "name": "query_market_data",
        "description": "查询市场数据，支持按剂量、品牌、分销率等维度筛选",
    },
]

# Function-calling schemas offered to the model (disabled queries are not listed)
DATA_QUERY_TOOLS = [
    {
        "type": "function",
        "function": {
            "name": DataQuery.BY_DOSAGE.value,
            "description": (
                "按剂量筛选数据，分析品牌在不同剂量下的表现差异。可以传入\"all\"查看所有剂量的对比，"
                "也可以传入具体剂量（如\"10mg\"、\"20mg\"）查看该剂量的详细数据。"
                "建议先调用dosage=\"all\"查看整体分布，再针对不同剂量深入分析。"
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "dosage": {
                        "type": "string",
                        "description": "剂量名称，如\"10mg\"、\"20mg\"。传入\"all\"返回所有剂量的统计信息",
                    },
                    "brand": {
                        "type": "string",
                        "description": "可选：品牌名称，如\"立普妥\"、\"可定\"。支持模糊匹配",
                    },
                },
                "required": ["dosage"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": DataQuery.WD.value,
            "description": (
                "查询分销率WD数据，分析渠道铺货情况。可以单独查询某个品牌的整体WD，"
                "也可以结合剂量、规格等维度进行交叉分析。建议对比同一品牌不同剂量的WD。"
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "dosage": {"type": "string", "description": "可选：剂量，如\"10mg\"、\"20mg\""},
                    "brand": {
                        "type": "string",
                        "description": "可选：品牌名称，支持模糊匹配。不提供时使用当前分析品牌",
                    },
                    "packageSize": {
                        "type": "string",
                        "description": "可选：包装大小，如\"大包装\"、\"小包装\"、\"20mgx28s\"",
                    },
                },
            },
        },
    },
]

_DISABLED_TITLES = {
    DataQuery.BY_PRODUCT_SPEC: "产品特性维度查询结果",
    DataQuery.PRICE_DIFFERENCE: "渠道间价差查询结果",
    DataQuery.PUBLIC_AWARENESS: "公域认知度查询结果",
}


# ── Matching helpers ──────────────────────────────────────────────────────


def fuzzy_match(data_value: Any, target: Any) -> bool:
    """Case- and whitespace-insensitive match of a cell value against a query term.

    Dosage-like targets (containing ``mg``) match when the leading numbers
    agree and both sides mention ``mg``, or when one contains the other.
    Anything else matches on containment in either direction, so "立普妥"
    matches "立普妥(阿托伐他汀钙片)" and "浙江" matches "浙江省".
    """
    if data_value is None or target is None:
        return False
    data = str(data_value).strip().lower()
    wanted = str(target).strip().lower()
    if not data or not wanted:
        return False
    if data == wanted:
        return True

    if "mg" in wanted:
        wanted_num = _NUMBER_RE.search(wanted)
        data_num = _NUMBER_RE.search(data)
        if (
            wanted_num
            and data_num
            and wanted_num.group() == data_num.group()
            and "mg" in data
        ):
            return True

    return wanted in data or data in wanted


def dimension_key(dimensions: list[Dimension], keywords: tuple[str, ...]) -> str | None:
    """Key of the first dimension whose label contains any keyword."""
    for dim in dimensions:
        label = str(dim.get("label", "")).lower()
        if any(kw.lower() in label for kw in keywords):
            return dim.get("key")
    return None


def _parse_number(raw: Any) -> float:
    if raw is None or raw == "" or isinstance(raw, bool):
        return 0.0
    if isinstance(raw, (int, float)):
        return float(raw)
    try:
        return float(str(raw).replace(",", ""))
    except ValueError:
        return 0.0


def _amount(value: float, digits: int = 3) -> str:
    """Thousands-separated amount, trailing zeros dropped."""
    text = f"{value:,.{digits}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _frame(market_data: list[Row], columns: dict[str, str | None]) -> pl.DataFrame:
    """Build a typed frame with the requested columns as strings plus ``value``.

    *columns* maps output name to the row key; a missing key yields "".
    """
    data: dict[str, list] = {
        name: [
            "" if key is None or row.get(key) is None else str(row.get(key))
            for row in market_data
        ]
        for name, key in columns.items()
    }
    data["value"] = [_parse_number(row.get("value")) for row in market_data]
    return pl.DataFrame(data, schema={**{n: pl.Utf8 for n in columns}, "value": pl.Float64})


def _matches(column: str, target: str) -> pl.Expr:
    return pl.col(column).map_elements(
        lambda v: fuzzy_match(v, target), return_dtype=pl.Boolean
    )


# ── Data queries ──────────────────────────────────────────────────────────


def _query_by_dosage(
    args: dict[str, Any],
    market_data: list[Row],
    dimensions: list[Dimension],
    selected_brand: str,
) -> str:
    dosage = args.get("dosage")
    brand = args.get("brand") or ""
    target_brand = brand or selected_brand
    dosage_key = dimension_key(dimensions, DOSAGE_KEYWORDS)
    brand_key = dimension_key(dimensions, BRAND_KEYWORDS)
    df = _frame(market_data, {"dosage": dosage_key, "brand": brand_key})

    if dosage == "all":
        df = df.with_columns(
            pl.when(pl.col("dosage") == "").then(pl.lit("未知")).otherwise(pl.col("dosage")).alias("dosage"),
            (_matches("brand", target_brand) if brand_key else pl.lit(False)).alias("is_brand"),
        )
        stats = (
            df.group_by("dosage", maintain_order=True)
            .agg(
                pl.col("value").sum().alias("total"),
                pl.col("value").filter(pl.col("is_brand")).sum().alias("brand_total"),
                pl.len().alias("count"),
            )
            .sort("total", descending=True, maintain_order=True)
        )
        lines = ["## 剂量维度分析结果", f"共分析 {stats.height} 个剂量的数据："]
        for row in stats.iter_rows(named=True):
            share = row["brand_total"] / row["total"] * 100 if row["total"] > 0 else 0.0
            lines.append(
                f"- {row['dosage']}: 总金额 {_amount(row['total'])} 元，"
                f"{target_brand} 金额 {_amount(row['brand_total'])} 元，"
                f"份额 {share:.2f}%，数据点 {row['count']} 条"
            )
        return "\n".join(lines)

    if not dosage_key:
        return "## 剂量维度查询结果：错误\n数据库中未找到剂量字段"

    df = df.filter(_matches("dosage", str(dosage)))
    if brand_key:
        df = df.filter(_matches("brand", target_brand))

    total = float(df.get_column("value").sum()) if df.height else 0.0
    lines = [
        f"## 剂量维度查询结果：{dosage}",
        f"筛选条件：剂量={dosage}, 品牌={target_brand}",
        f"匹配数据点：{df.height} 条",
        f"总金额：{_amount(total)} 元",
    ]
    if df.height:
        lines.append(f"平均金额：{_amount(total / df.height)} 元/条")
    return "\n".join(lines)


def _query_wd(
    args: dict[str, Any],
    market_data: list[Row],
    dimensions: list[Dimension],
    selected_brand: str,
) -> str:
    dosage = args.get("dosage") or ""
    package = args.get("packageSize") or ""
    target_brand = args.get("brand") or selected_brand

    wd_key = dimension_key(dimensions, WD_KEYWORDS)
    brand_key = dimension_key(dimensions, BRAND_KEYWORDS)
    package_key = dimension_key(dimensions, PACKAGE_KEYWORDS)
    dosage_key = dimension_key(dimensions, DOSAGE_KEYWORDS)

    df = _frame(
        market_data,
        {"brand": brand_key, "dosage": dosage_key, "package": package_key},
    ).with_columns(
        pl.Series(
            "wd",
            [_parse_number(row.get(wd_key)) if wd_key else 0.0 for row in market_data],
            dtype=pl.Float64,
        )
    )

    if brand_key:
        df = df.filter(_matches("brand", target_brand))
        if df.height == 0:
            logger.debug("[query] queryWD matched no rows for brand {}", target_brand)
    if dosage:
        if dosage_key:
            df = df.filter(_matches("dosage", dosage))
        else:
            logger.debug("[query] queryWD has no dosage column, ignoring dosage filter")
    if package and package_key:
        df = df.filter(_matches("package", package))

    conditions = (f"剂量={dosage}, " if dosage else "") + (f"包装={package}, " if package else "")
    lines = [f"## 分销率WD查询结果：{target_brand}", f"筛选条件：{conditions}品牌={target_brand}"]

    if not wd_key:
        lines.append(
            "数据库中未包含WD字段（请检查列名是否为\"WD\"、\"wd\"、\"分销\"、\"分销率\"或\"加权铺货率\"）"
        )
        return "\n".join(lines)

    with_wd = df.filter(pl.col("wd") > 0)
    if with_wd.height == 0:
        lines.append("未找到WD数据（筛选后的数据中WD值均为0或空）")
        return "\n".join(lines)

    lines.append(f"平均WD：{with_wd.get_column('wd').mean():.2f}")
    lines.append(f"总金额：{_amount(float(with_wd.get_column('value').sum()))} 元")
    lines.append(f"数据点：{with_wd.height} 条")
    return "\n".join(lines)


def execute_data_query(
    function_name: str,
    args: dict[str, Any] | None,
    market_data: list[Row],
    dimensions: list[Dimension],
    selected_brand: str,
) -> str:
    """Run one named query and return a text report for the model.

    Never raises: unknown functions and unexpected failures are reported
    as text, since the result is fed straight back into the conversation.
    """
    args = args or {}
    logger.debug("[query] {} {}", function_name, args)
    try:
        query = DataQuery(function_name)
    except ValueError:
        return f"错误：未知的查询函数 \"{function_name}\""

    if query in DISABLED_QUERIES:
        return (
            f"## {_DISABLED_TITLES[query]}：暂时禁用\n"
            "此查询函数暂时禁用，用于调试。请使用 queryByDosage 和 queryWD 进行查询。"
        )

    try:
        if query == DataQuery.BY_DOSAGE:
            return _query_by_dosage(args, market_data or [], dimensions or [], selected_brand)
        return _query_wd(args, market_data or [], dimensions or [], selected_brand)
    except Exception as exc:
        logger.opt(exception=True).warning("[query] {} failed", function_name)
        return f"查询执行错误：{exc}"


# ── Prompt input ──────────────────────────────────────────────────────────


def format_market_data_for_ai(
    market_data: list[Row],
    mekko_data: list[dict[str, Any]],
    x_axis_key: str,
    y_axis_key: str,
    dimensions: list[Dimension],
    selected_brand: str,
) -> str:
    """Condense market rows and Mekko columns into a Markdown summary."""
    labels = {d.get("key"): d.get("label") for d in dimensions}
    x_label = labels.get(x_axis_key) or "横轴维度"
    y_label = labels.get(y_axis_key) or "纵轴维度"

    lines = [
        "## 数据概览",
        f"- 总数据点：{len(market_data)}条",
        f"- 横轴维度：{x_label}",
        f"- 纵轴维度：{y_label}",
        f"- 分析品牌：{selected_brand}",
        "",
        "## Mekko图表数据摘要",
    ]
    for column in mekko_data[:10]:
        lines.append(f"### {x_label}: {column.get('xAxisValue', '')}")
        lines.append(f"- 总市场份额：{_parse_number(column.get('xAxisTotalShare')):.2f}%")
        lines.append(f"- 总金额：{_amount(_parse_number(column.get('xAxisTotalValue')), 0)} 元")
        lines.append(f"- {y_label}分布：")
        for seg in (column.get("segments") or [])[:5]:
            lines.append(
                f"  - {seg.get('yAxisValue', '')}: {_parse_number(seg.get('share')):.2f}% "
                f"({_amount(_parse_number(seg.get('value')), 0)} 元)"
            )
        lines.append("")

    brand_key = dimension_key(dimensions, BRAND_KEYWORDS)
    if brand_key and market_data:
        totals = (
            _frame(market_data, {"brand": brand_key})
            .filter(pl.col("brand") != "")
            .group_by("brand", maintain_order=True)
            .agg(pl.col("value").sum().alias("total"))
            .sort("total", descending=True, maintain_order=True)
            .head(10)
        )
        lines.append("## 品牌维度数据")
        for row in totals.iter_rows(named=True):
            lines.append(f"- {row['brand']}: {_amount(row['total'], 0)} 元")
        lines.append("")

    return "\n".join(lines)


def parse_json_reply(text: str | None) -> dict[str, Any] | None:
    """Extract the JSON object from a model reply (fenced blocks tolerated)."""
    if not text:
        return None
    match = _FENCED_JSON_RE.search(text) or _FENCED_RE.search(text)
    candidate = match.group(1) if match else text
    try:
        parsed = json.loads(candidate.strip())
    except ValueError:
        obj = _OBJECT_RE.search(candidate)
        if obj is None:
            return None
        try:
            parsed = json.loads(obj.group())
        except ValueError:
            return None
    return parsed if isinstance(parsed, dict) else None


# ── Scissors gaps ─────────────────────────────────────────────────────────

_SCISSORS_SYSTEM_TEMPLATE = """你是一名负责零售渠道心血管（降血脂）市场的资深数据分析专家。
你将拿到{brand}及其竞争产品在零售渠道的详细市场数据。

## "剪刀差"的定义
在任意两个可比对象之间（品牌 / 剂量 / 省份 / 渠道 / 时间），当前份额水平或历史增速向相反方向拉开并形成明显差距，称为"剪刀差"现象。
重点关注{brand}的表现，可以重点对比竞品品牌。

剪刀差分类（非穷尽）：
- 同品牌，不同细分市场剪刀差
- 同细分市场，不同品牌剪刀差
- 同细分市场，不同价格 / 规格剪刀差
- 同为原研品，不同细分市场内表现剪刀差（需拉齐集采时间轴）

## 任务
1. 全面扫描数据，识别与{brand}相关的代表性剪刀差
2. 合并重复项目（对比对象、渠道、份额计算口径相同即为同一条）
3. 只输出剪刀差现象，不输出原因分析

## 输出格式
只输出JSON：
{{
  "scissorsGaps": [
    {{"title": "简短标题，概括问题和维度", "phenomenon": "用1-2句话说明具体数据表现，必须引用真实数据"}}
  ]
}}
最多输出{max_items}条最关键的剪刀差。"""

_SCISSORS_USER_TEMPLATE = """请基于以下市场数据识别与{brand}相关的剪刀差，并合并重复项目。

市场数据：
{data}

请严格按照JSON格式输出，只输出JSON。每个剪刀差必须包含title和phenomenon，不要包含possibleReasons字段。"""

_MOCK_SCISSORS_GAP = {
    "title": "零售渠道分子式内份额落后：立普妥相对可定弱势",
    "phenomenon": (
        "医院内立普妥分子式内份额与可定持平（均为~12%），零售渠道内立普妥在分子式内份额低于可定"
        "（~9%对比~12%，差距3个百分点）；拆分来看，立普妥主要是10mg中标省份（如安徽、合肥）的份额明显低。"
        "同时，发现立普妥10mg中标省份的WD较低（44对比其他省份60），基于WD分销作为零售的重要因素，"
        "可能存在进一步提升的空间"
    ),
}


def _empty_result() -> dict[str, list]:
    return {"scissorsGaps": [], "problems": [], "causes": [], "strategies": []}


def analyze_scissors_gaps(
    client: ChatCompletionClient,
    market_data: list[Row],
    mekko_data: list[dict[str, Any]],
    selected_brand: str,
    x_axis_key: str = "",
    y_axis_key: str = "",
    dimensions: list[Dimension] | None = None,
    max_items: int = 5,
) -> dict[str, list]:
    """Ask the model for the brand's most telling scissors gaps.

    Returns ``{"scissorsGaps": [...], "problems": [], "causes": [],
    "strategies": []}``; the lists are empty when the call or the JSON
    parse fails.
    """
    result = _empty_result()
    if not client.is_configured:
        logger.info("[scissors] No API key, returning canned gap")
        result["scissorsGaps"] = [dict(_MOCK_SCISSORS_GAP)][:max_items]
        return result

    summary = format_market_data_for_ai(
        market_data, mekko_data, x_axis_key, y_axis_key, dimensions or [], selected_brand
    )
    text = client.complete(
        _SCISSORS_SYSTEM_TEMPLATE.format(brand=selected_brand, max_items=max_items),
        _SCISSORS_USER_TEMPLATE.format(brand=selected_brand, data=summary),
        max_tokens=SCISSORS_GAPS_MAX_TOKENS,
    )
    parsed = parse_json_reply(text)
    if parsed is None:
        logger.warning("[scissors] Could not parse model reply")
        return result

    gaps = parsed.get("scissorsGaps") or []
    result["scissorsGaps"] = [g for g in gaps if isinstance(g, dict)][:max_items]
    logger.info("[scissors] {} gap(s) for {}", len(result["scissorsGaps"]), selected_brand)
    return result


# ── Problem causes ────────────────────────────────────────────────────────

_CAUSES_SYSTEM_TEMPLATE = """你是一名负责零售渠道心血管（降血脂）市场的资深数据分析专家。
请针对给定问题深挖{brand}表现背后的原因。

## 你必须使用工具函数查询数据库
1. queryByDosage：按剂量筛选数据，可以传入"all"查看所有剂量的对比
2. queryWD：查询分销率WD数据，建议对比同一品牌不同剂量的WD
不能在没有查询数据的情况下直接推测。如果数据库中没有相关数据，请明确说明"数据库中暂无相关数据"。

## 输出格式
只输出JSON：
{{
  "causes": [
    {{
      "problem": "问题描述",
      "statement": "总结性的分析陈述，用\\n\\n分隔段落，分别以**环境因素**、**商业推广因素**、**产品因素**、**资源分配因素**为小标题"
    }}
  ]
}}
WD数据只在商业推广因素中提及。不要在statement中提及金额和份额数据。"""

_CAUSES_USER_TEMPLATE = """请针对以下问题深挖其背后原因：

{problem}

先调用 queryByDosage({{dosage: 'all', brand: '{brand}'}})，再调用 queryWD 对比{brand}不同剂量的WD。
只分析这一个问题，严格按照JSON格式输出。"""

_CAUSES_FOLLOW_UP_TEMPLATE = (
    "查询结果已返回。请基于这些查询结果进行深度分析，并输出JSON格式的分析结果。"
    "记住：只分析当前这一个问题，输出格式为 "
    '{{"causes": [{{"problem": "{problem}", "statement": "总结性的分析陈述..."}}]}}'
)

_MOCK_CAUSE_STATEMENT = (
    "基于数据库维度分析：通过省份维度分析发现，品牌表现主要受部分省份拖累，"
    "这些省份的共同点是集采政策严格、集采中阿托伐他汀仅有10mg中标。同时，通过产品特性维度分析发现，"
    "大包装产品渠道分销WD表现不佳（WD为44，对比其他省份60），导致院外承接院内处方能力差。"
)


def _gap_text(gap: dict[str, Any]) -> str:
    text = f"{gap.get('title', '')}\n   现象：{gap.get('phenomenon', '')}"
    if gap.get("possibleReasons"):
        text += f"\n   可能原因：{gap['possibleReasons']}"
    return text


def run_tool_loop(
    client: ChatCompletionClient,
    messages: list[dict[str, Any]],
    follow_up: str,
    market_data: list[Row],
    dimensions: list[Dimension],
    selected_brand: str,
    max_iterations: int = MAX_TOOL_ITERATIONS,
) -> str | None:
    """Converse until the model answers without tool calls.

    Each round executes every requested query and appends the results as
    ``tool`` messages plus *follow_up* as a user nudge. Returns the final
    text, or None on transport failure or when the rounds run out.
    """
    for iteration in range(max_iterations):
        message = client.chat(messages, max_tokens=PROBLEM_CAUSES_MAX_TOKENS, tools=DATA_QUERY_TOOLS)
        if message is None:
            return None

        tool_calls = message.get("tool_calls") or []
        assistant: dict[str, Any] = {"role": "assistant", "content": message.get("content") or ""}
        if tool_calls:
            assistant["tool_calls"] = tool_calls
        messages.append(assistant)

        if not tool_calls:
            return message.get("content") or ""

        logger.debug("[causes] Round {}: {} tool call(s)", iteration + 1, len(tool_calls))
        for call in tool_calls:
            function = call.get("function") or {}
            name = function.get("name", "")
            try:
                args = json.loads(function.get("arguments") or "{}")
            except ValueError:
                logger.debug("[causes] Bad arguments for {}: {}", name, function.get("arguments"))
                args = {}
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": call.get("id", ""),
                    "name": name,
                    "content": execute_data_query(
                        name, args, market_data, dimensions, selected_brand
                    ),
                }
            )
        messages.append({"role": "user", "content": follow_up})

    logger.warning("[causes] Tool loop hit {} rounds without an answer", max_iterations)
    return None


def analyze_problem_causes(
    client: ChatCompletionClient,
    scissors_gaps: list[dict[str, Any]],
    selected_brand: str,
    market_data: list[Row] | None = None,
    dimensions: list[Dimension] | None = None,
    max_problems: int = 10,
    confirmed_problems: list[str] | None = None,
    user_feedback: str | None = None,
) -> dict[str, list]:
    """Explain each problem with a four-factor statement.

    Problems are the user's confirmed list when given, else the gap
    titles. Each one gets its own tool-calling conversation; a problem
    whose reply cannot be parsed is skipped.
    """
    if confirmed_problems:
        items = [(p, p) for p in confirmed_problems[:max_problems]]
        problems = list(confirmed_problems[:max_problems])
    else:
        gaps = [g for g in scissors_gaps if isinstance(g, dict)][:max_problems]
        items = [(str(g.get("title", "")), _gap_text(g)) for g in gaps]
        problems = [label for label, _ in items]

    system = _CAUSES_SYSTEM_TEMPLATE.format(brand=selected_brand)
    causes: list[dict[str, str]] = []
    for i, (label, problem_text) in enumerate(items, start=1):
        logger.info("[causes] Problem {}/{}: {}", i, len(items), label)
        if not client.is_configured:
            causes.append({"problem": label, "statement": _MOCK_CAUSE_STATEMENT})
            continue

        user = _CAUSES_USER_TEMPLATE.format(problem=problem_text, brand=selected_brand)
        if user_feedback:
            user += f"\n\n用户反馈：\n{user_feedback}\n\n请根据用户反馈调整分析。"
        text = run_tool_loop(
            client,
            [{"role": "system", "content": system}, {"role": "user", "content": user}],
            _CAUSES_FOLLOW_UP_TEMPLATE.format(problem=label),
            market_data or [],
            dimensions or [],
            selected_brand,
        )
        parsed = parse_json_reply(text)
        entries = (parsed or {}).get("causes") or []
        if entries and isinstance(entries[0], dict) and entries[0].get("statement"):
            causes.append({"problem": label, "statement": str(entries[0]["statement"])})
        else:
            logger.warning("[causes] No usable analysis for problem {}", i)

    return {"problems": problems, "causes": causes, "strategies": []}
