"""Tool-invocation endpoints used by the strategy-planning views.

Request bodies keep the dashboard's camelCase field names. Failures are
returned as ``{"error": str}`` with 400 for missing fields and 500 for
anything unexpected.
"""

import json
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger

from pharma_insight.config import LLM_RATE_LIMIT, SERVICE_NAME
from pharma_insight.middleware import run_in_pool
from pharma_insight.rate_limit import limiter
from pharma_insight.services.problem_analysis import (
    TOOL_MANIFEST,
    analyze_problem_causes,
    analyze_scissors_gaps,
    execute_data_query,
)

router = APIRouter(tags=["Tools"])


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status)


async def read_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


def _missing(body: dict[str, Any], *names: str) -> bool:
    return any(body.get(name) is None or body.get(name) == "" for name in names)


def _limit(body: dict[str, Any], name: str, default: int) -> int | None:
    """Non-negative integer field, *default* when absent, None when invalid."""
    value = body.get(name)
    if value is None:
        return default
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


@router.get("/health")
async def health():
    return {"status": "ok", "service": SERVICE_NAME}


@router.get("/tools")
async def list_tools():
    return {"tools": TOOL_MANIFEST}


@router.post("/tools/analyze_scissors_gaps")
@limiter.limit(LLM_RATE_LIMIT)
async def scissors_gaps_tool(request: Request):
    body = await read_body(request)
    if _missing(body, "marketData", "mekkoData", "selectedBrand"):
        return _error(400, "Missing required parameters: marketData, mekkoData, selectedBrand")
    max_items = _limit(body, "maxItems", 5)
    if max_items is None:
        return _error(400, "maxItems must be a non-negative integer")

    try:
        return await run_in_pool(
            analyze_scissors_gaps,
            request.app.state.llm,
            body["marketData"],
            body["mekkoData"],
            body["selectedBrand"],
            x_axis_key=body.get("selectedXAxisKey") or "",
            y_axis_key=body.get("selectedYAxisKey") or "",
            dimensions=body.get("availableDimensions") or [],
            max_items=max_items,
            label="scissors gap analysis",
        )
    except HTTPException:
        raise
    except Exception as exc:
        logger.opt(exception=True).error("[tools] analyze_scissors_gaps failed")
        return _error(500, str(exc) or "Unknown error")


@router.post("/tools/analyze_problem_causes")
@limiter.limit(LLM_RATE_LIMIT)
async def problem_causes_tool(request: Request):
    body = await read_body(request)
    if _missing(body, "scissorsGaps", "selectedBrand"):
        return _error(400, "Missing required parameters: scissorsGaps, selectedBrand")
    max_problems = _limit(body, "maxProblems", 10)
    if max_problems is None:
        return _error(400, "maxProblems must be a non-negative integer")
    confirmed = body.get("confirmedProblems")
    if confirmed is not None and (
        not isinstance(confirmed, list) or not all(isinstance(p, str) for p in confirmed)
    ):
        return _error(400, "confirmedProblems must be a list of strings")

    try:
        return await run_in_pool(
            analyze_problem_causes,
            request.app.state.llm,
            body["scissorsGaps"],
            body["selectedBrand"],
            market_data=body.get("marketData") or [],
            dimensions=body.get("availableDimensions") or [],
            max_problems=max_problems,
            confirmed_problems=confirmed or None,
            user_feedback=body.get("userFeedback") or None,
            label="problem cause analysis",
        )
    except HTTPException:
        raise
    except Exception as exc:
        logger.opt(exception=True).error("[tools] analyze_problem_causes failed")
        return _error(500, str(exc) or "Unknown error")


@router.post("/tools/query_market_data")
async def query_market_data_tool(request: Request):
    body = await read_body(request)
    if _missing(body, "functionName", "args"):
        return _error(400, "Missing required parameters: functionName, args")

    try:
        result = await run_in_pool(
            execute_data_query,
            body["functionName"],
            body["args"],
            body.get("marketData") or [],
            body.get("availableDimensions") or [],
            body.get("selectedBrand") or "",
            label="market data query",
        )
    except HTTPException:
        raise
    except Exception as exc:
        logger.opt(exception=True).error("[tools] query_market_data failed")
        return _error(500, str(exc) or "Unknown error")
    return {"result": result}
