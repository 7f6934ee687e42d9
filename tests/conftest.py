"""Shared test fixtures."""

from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient

from pharma_insight.models.schemas import ProductPerformance, ProvincePerformance
from pharma_insight.rate_limit import limiter
from pharma_insight.services.analysis_cache import AnalysisCache
from pharma_insight.services.llm_client import ChatCompletionClient
from tests.fixtures.sample_data import make_product, make_province


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to avoid 429s."""
    limiter.reset()
    yield


@pytest.fixture()
def product():
    return ProductPerformance.from_dict(make_product())


@pytest.fixture()
def province():
    return ProvincePerformance.from_dict(make_province())


@pytest.fixture()
def cache():
    return AnalysisCache()


@pytest.fixture()
def offline_client():
    """LLM client without an API key: every LLM feature uses canned replies."""
    return ChatCompletionClient(base_url="https://api.example.com/v1", api_key="")


@pytest.fixture()
def online_client():
    return ChatCompletionClient(
        base_url="https://api.example.com/v1",
        model="deepseek-chat",
        timeout=30.0,
        api_key="sk-test",
    )


@pytest.fixture()
def client(cache, offline_client):
    """FastAPI TestClient with fresh services and no LLM key."""
    from pharma_insight.main import analysis_services, app

    @asynccontextmanager
    async def _test_lifespan(app):
        async with analysis_services(app, cache, offline_client):
            yield

    app.router.lifespan_context = _test_lifespan
    with TestClient(app) as c:
        yield c
