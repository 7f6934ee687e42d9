"""Security headers middleware and bounded worker pool for LLM-backed calls."""

import asyncio
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any

from fastapi import HTTPException
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from pharma_insight.config import TOOL_TIMEOUT, TOOL_WORKERS

_tool_pool = ThreadPoolExecutor(max_workers=TOOL_WORKERS, thread_name_prefix="tool")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Headers for a JSON API: nothing here is meant to be framed or rendered."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Cache-Control"] = "no-store"
        return response


async def run_in_pool(
    fn: Callable[..., Any],
    *args: Any,
    timeout: float = TOOL_TIMEOUT,
    label: str = "tool",
    **kwargs: Any,
) -> Any:
    """Run a blocking function on the tool pool, raising HTTP 503 on timeout.

    The worker keeps running after a timeout; only the request gives up.
    """
    loop = asyncio.get_running_loop()
    try:
        return await asyncio.wait_for(
            loop.run_in_executor(_tool_pool, partial(fn, *args, **kwargs)),
            timeout=timeout,
        )
    except TimeoutError as err:
        logger.warning("Timeout after {}s for {}", timeout, label)
        raise HTTPException(503, detail=f"{label} timed out after {timeout}s") from err
