"""Pharma sales insight API: cached AI analyses and problem-analysis tools."""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException

from pharma_insight.config import CORS_ORIGINS, DEV_MODE, HTTP_HOST, HTTP_PORT
from pharma_insight.logging_config import setup_logging
from pharma_insight.middleware import SecurityHeadersMiddleware
from pharma_insight.rate_limit import limiter
from pharma_insight.routes.analysis import router as analysis_router
from pharma_insight.routes.tools import router as tools_router
from pharma_insight.services.analysis_cache import (
    AnalysisCache,
    product_key,
    province_key,
    target_plan_key,
)
from pharma_insight.services.analysis_generator import AnalysisGenerator
from pharma_insight.services.chat_service import ChatService
from pharma_insight.services.llm_client import ChatCompletionClient
from pharma_insight.services.refresh_coordinator import AnalysisLoader

setup_logging()


@asynccontextmanager
async def analysis_services(app: FastAPI, cache: AnalysisCache, client: ChatCompletionClient):
    """Put the cache, loaders and chat service on ``app.state``.

    While open, every loader watches the cache so that a stale mark
    reloads the analysis it shows. On exit the watchers are removed and
    pending automatic refreshes awaited.
    """
    generator = AnalysisGenerator(client)
    loaders = {
        "product_loader": AnalysisLoader(
            cache,
            generator.analyze_product,
            lambda p: product_key(p.product_id, p.period),
            name="product",
        ),
        "province_loader": AnalysisLoader(
            cache,
            generator.analyze_province,
            lambda p: province_key(p.province_id, p.period),
            name="province",
        ),
        "target_plan_loader": AnalysisLoader(
            cache,
            generator.plan_targets,
            lambda r: target_plan_key(r.indicator_id, r.national_sales_growth),
            name="targetplan",
        ),
    }
    unwatch = [loader.watch() for loader in loaders.values()]

    app.state.analysis = cache
    app.state.llm = client
    for attr, loader in loaders.items():
        setattr(app.state, attr, loader)
    app.state.chat = ChatService(client, cache)

    try:
        yield
    finally:
        for stop in unwatch:
            stop()
        for loader in loaders.values():
            await loader.wait_idle()


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = ChatCompletionClient()
    async with analysis_services(app, AnalysisCache(), client):
        logger.info("Analysis services initialized (LLM configured: {})", client.is_configured)
        yield


app = FastAPI(
    title="Pharma Sales Insight API",
    description="AI analysis cache and problem-analysis tools for the sales strategy dashboard",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]


@app.exception_handler(HTTPException)
async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)

app.include_router(tools_router)
app.include_router(analysis_router, prefix="/api")


def main() -> None:
    uvicorn.run(
        "pharma_insight.main:app",
        host=HTTP_HOST,
        port=HTTP_PORT,
        reload=DEV_MODE,
    )


if __name__ == "__main__":
    main()
