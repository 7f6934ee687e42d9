"""Central configuration: LLM endpoint, server settings, analysis constants."""

import os

# Chat-completion endpoint (OpenAI-compatible). DeepSeek by default.
# Without an API key every LLM-backed feature falls back to canned responses.
LLM_BASE_URL = os.environ.get("LLM_BASE_URL", "https://api.deepseek.com/v1")
LLM_API_KEY = os.environ.get("LLM_API_KEY", os.environ.get("DEEPSEEK_API_KEY", ""))
LLM_MODEL = os.environ.get("LLM_MODEL", "deepseek-chat")
LLM_TIMEOUT = float(os.environ.get("LLM_TIMEOUT", "120"))
LLM_HEALTH_TIMEOUT = 5.0  # connectivity check
LLM_TEMPERATURE = float(os.environ.get("LLM_TEMPERATURE", "0.7"))

# max_tokens per call type
ANALYSIS_MAX_TOKENS = 2000
CHAT_MAX_TOKENS = 2000
SCISSORS_GAPS_MAX_TOKENS = 5000
PROBLEM_CAUSES_MAX_TOKENS = 8000

# Rounds of tool calls allowed per problem before giving up
MAX_TOOL_ITERATIONS = int(os.environ.get("MAX_TOOL_ITERATIONS", "15"))

# HTTP server
HTTP_HOST = os.environ.get("PHARMA_HTTP_HOST", "0.0.0.0")
HTTP_PORT = int(os.environ.get("PHARMA_HTTP_PORT", "3001"))
LOG_LEVEL = os.environ.get("PHARMA_LOG_LEVEL", "INFO")
CORS_ORIGINS = [
    o.strip() for o in os.environ.get("PHARMA_CORS_ORIGINS", "*").split(",") if o.strip()
]

SERVICE_NAME = "problem-analysis-api"

# Interpretation thresholds (percentage points unless noted)
DELIMIT_DROP_THRESHOLD = -3.0
DELIMIT_DROP_HIGH = 5.0
INTERNAL_SHARE_DROP_THRESHOLD = -2.0
INTERNAL_SHARE_DROP_HIGH = 3.0
COMPETITOR_RISE_THRESHOLD = 2.0
COMPETITOR_RISE_HIGH = 3.0
DELIMIT_TARGET_RATE = 70.0
LOW_MARKET_SHARE = 10.0
LOW_PENETRATION_RATE = 40.0
HEALTH_SCORE_FLOOR = 60.0
CORE_PENETRATION_DROP_THRESHOLD = -5.0

# Target planning: yearly growth (percent) by trend, extra room for values below
# their historical average, and the province variance treated as volatile
TARGET_TREND_GROWTH = {"up": 5.0, "stable": 2.0, "down": 0.0}
TARGET_CATCH_UP_GROWTH = 1.0
TARGET_VARIANCE_HIGH = 10.0

# Keywords in a chat message that ask for the displayed analysis to be regenerated
REFRESH_KEYWORDS = ("刷新", "更新", "重新分析", "重新生成", "重新计算", "refresh", "regenerate")

# Dev mode enables uvicorn auto-reload
DEV_MODE = os.environ.get("PHARMA_DEV", "1") == "1"

# Upper bound for one tool request; a problem-cause run may take several LLM rounds
TOOL_TIMEOUT = float(os.environ.get("PHARMA_TOOL_TIMEOUT", "900"))
TOOL_WORKERS = int(os.environ.get("PHARMA_TOOL_WORKERS", "4"))

# Per-client limit on endpoints that call the LLM (slowapi syntax)
LLM_RATE_LIMIT = os.environ.get("PHARMA_LLM_RATE_LIMIT", "10/minute")
