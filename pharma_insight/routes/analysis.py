"""JSON endpoints for cached analyses and target plans, interpretation and chat."""

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from loguru import logger

from pharma_insight.config import LLM_RATE_LIMIT
from pharma_insight.models.schemas import (
    AIAnalysis,
    ProductPerformance,
    ProvinceDetail,
    ProvincePerformance,
    TargetPlanRequest,
)
from pharma_insight.rate_limit import limiter
from pharma_insight.routes.tools import read_body
from pharma_insight.services.interpretation_service import interpret

router = APIRouter(tags=["Analysis"])

KEY_QUERY = Query(..., min_length=1, max_length=200)


def _parse(parser, data: dict[str, Any], what: str):
    try:
        return parser(data)
    except (KeyError, ValueError, TypeError) as exc:
        raise HTTPException(400, detail=f"Invalid {what}: {exc}") from exc


def _payload(key: str, result) -> dict[str, Any]:
    return {"key": key, "analysis": asdict(result)}


async def _load(loader, subject, force_refresh: bool = False, refresh: bool = False):
    try:
        key = loader.key_for(subject)
        if refresh:
            result = await loader.refresh(subject)
        else:
            result = await loader.load(subject, force_refresh=force_refresh)
    except ValueError as exc:
        raise HTTPException(400, detail=str(exc)) from exc
    except Exception as exc:
        logger.opt(exception=True).error("[api] {} analysis failed", loader.name)
        raise HTTPException(500, detail=str(exc) or "Analysis failed") from exc
    return _payload(key, result)


@router.post("/analysis/product")
@limiter.limit(LLM_RATE_LIMIT)
async def product_analysis(request: Request, force_refresh: bool = False):
    product = _parse(ProductPerformance.from_dict, await read_body(request), "product")
    return await _load(request.app.state.product_loader, product, force_refresh=force_refresh)


@router.post("/analysis/product/refresh")
@limiter.limit(LLM_RATE_LIMIT)
async def product_analysis_refresh(request: Request):
    product = _parse(ProductPerformance.from_dict, await read_body(request), "product")
    return await _load(request.app.state.product_loader, product, refresh=True)


@router.post("/analysis/province")
@limiter.limit(LLM_RATE_LIMIT)
async def province_analysis(request: Request, force_refresh: bool = False):
    province = _parse(ProvincePerformance.from_dict, await read_body(request), "province")
    return await _load(request.app.state.province_loader, province, force_refresh=force_refresh)


@router.post("/analysis/province/refresh")
@limiter.limit(LLM_RATE_LIMIT)
async def province_analysis_refresh(request: Request):
    province = _parse(ProvincePerformance.from_dict, await read_body(request), "province")
    return await _load(request.app.state.province_loader, province, refresh=True)


@router.post("/analysis/targetplan")
@limiter.limit(LLM_RATE_LIMIT)
async def target_plan(request: Request, force_refresh: bool = False):
    plan = _parse(TargetPlanRequest.from_dict, await read_body(request), "target plan request")
    return await _load(request.app.state.target_plan_loader, plan, force_refresh=force_refresh)


@router.post("/analysis/targetplan/refresh")
@limiter.limit(LLM_RATE_LIMIT)
async def target_plan_refresh(request: Request):
    plan = _parse(TargetPlanRequest.from_dict, await read_body(request), "target plan request")
    return await _load(request.app.state.target_plan_loader, plan, refresh=True)


@router.get("/analysis/status")
async def analysis_status(request: Request, key: str = KEY_QUERY):
    cache = request.app.state.analysis
    return {
        "key": key,
        "cached": key in cache,
        "stale": cache.is_stale(key),
        "refresh_counter": cache.refresh_counter,
    }


@router.get("/analysis/keys")
async def analysis_keys(request: Request):
    cache = request.app.state.analysis
    return {"keys": cache.keys(), "stale": cache.stale_keys()}


@router.post("/analysis/stale")
async def mark_analysis_stale(request: Request, key: str = KEY_QUERY):
    counter = request.app.state.analysis.mark_stale(key)
    return {"key": key, "refresh_counter": counter}


@router.delete("/analysis")
async def delete_analysis(request: Request, key: str = KEY_QUERY):
    request.app.state.analysis.delete(key)
    return {"key": key, "deleted": True}


@router.delete("/analysis/all")
async def clear_analyses(request: Request):
    removed = request.app.state.analysis.clear()
    return {"cleared": removed}


@router.post("/interpretation")
async def interpretation(request: Request):
    body = await read_body(request)
    if not isinstance(body.get("product"), dict):
        raise HTTPException(400, detail="Missing required parameter: product")
    product = _parse(ProductPerformance.from_dict, body["product"], "product")
    provinces = [
        _parse(ProvinceDetail.from_dict, p, "province")
        for p in body.get("provinces") or []
        if isinstance(p, dict)
    ]
    return asdict(interpret(product, provinces))


@router.post("/chat")
@limiter.limit(LLM_RATE_LIMIT)
async def chat(request: Request):
    body = await read_body(request)
    messages = body.get("messages")
    if not isinstance(messages, list) or not messages:
        raise HTTPException(400, detail="Missing required parameter: messages")

    analysis = None
    if isinstance(body.get("currentAnalysis"), dict):
        analysis = _parse(AIAnalysis.from_dict, body["currentAnalysis"], "analysis")

    reply = await request.app.state.chat.reply(
        [m for m in messages if isinstance(m, dict)],
        current_page=body.get("currentPage"),
        analysis=analysis,
    )
    return {
        "messages": reply.messages,
        "refresh_marked": reply.refresh_marked,
        "refresh_key": reply.refresh_key,
    }
