"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    STAGE_DEFAULT_TIMEOUT         — Default per-stage timeout in seconds (default: 120)
    STAGE_DEFAULT_RETRIES         — Default per-stage retry count (default: 0)
    STAGE_RETRY_DELAY             — Base linear retry delay in seconds (default: 1.0)
    MAX_HEAL_ITERATIONS           — Bound on diagnostics-driven heal rounds (default: 3)
    MAX_FILES_PER_HEAL_ITERATION  — Files handed to the fixer per heal round (default: 5)
    BUILD_TIMEOUT                 — Max seconds for a single build/test command (default: 120)
    BUILD_COMMAND / TEST_COMMAND  — Override the commands resolved from project type
    USE_DOCKER_SANDBOX            — Run build/test commands inside Docker (default: false)
    DOCKER_IMAGE                  — Sandbox image (default: python:3.11-slim)
    WORKSPACE_ROOT                — API-submitted workspaces must live under this dir (default: workspaces)
    PROGRESS_MAX_RUNS / PROGRESS_TTL — Finished progress records kept (default: 500 runs, 24h)
    RESILIENCE_CONFIG             — YAML file with per-service breaker/limiter overrides
    TELEGRAM_BOT_TOKEN            — Chat notification bot token
    TELEGRAM_CHAT_ID              — Chat notification target
    LLM_API_KEY / LLM_BASE_URL / LLM_MODEL — OpenAI-compatible file-fix backend
    LOG_DIR                       — Directory for dated log files (default: logs)

Heal Loop Bounds:
    MAX_HEAL_ITERATIONS and MAX_FILES_PER_HEAL_ITERATION cap how much work a
    single self-heal session may do. Files are fixed sequentially because
    every fix mutates the one shared working tree.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Orchestrator defaults
STAGE_DEFAULT_TIMEOUT = float(os.getenv("STAGE_DEFAULT_TIMEOUT", 120))
STAGE_DEFAULT_RETRIES = int(os.getenv("STAGE_DEFAULT_RETRIES", 0))
STAGE_RETRY_DELAY = float(os.getenv("STAGE_RETRY_DELAY", 1.0))

# Self-heal bounds
MAX_HEAL_ITERATIONS = int(os.getenv("MAX_HEAL_ITERATIONS", 3))
MAX_FILES_PER_HEAL_ITERATION = int(os.getenv("MAX_FILES_PER_HEAL_ITERATION", 5))

# Build / test execution
BUILD_TIMEOUT = int(os.getenv("BUILD_TIMEOUT", 120))
BUILD_COMMAND = os.getenv("BUILD_COMMAND")
TEST_COMMAND = os.getenv("TEST_COMMAND")
USE_DOCKER_SANDBOX = _env_bool("USE_DOCKER_SANDBOX")
DOCKER_IMAGE = os.getenv("DOCKER_IMAGE", "python:3.11-slim")
WORKSPACE_ROOT = os.path.abspath(os.getenv("WORKSPACE_ROOT", "workspaces"))

# Progress records of finished runs
PROGRESS_MAX_RUNS = int(os.getenv("PROGRESS_MAX_RUNS", 500))
PROGRESS_TTL = float(os.getenv("PROGRESS_TTL", 86400))

# Resilience overrides
RESILIENCE_CONFIG = os.getenv("RESILIENCE_CONFIG", os.path.join("config", "resilience.yaml"))

# Notifications
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID")

# File-fix backend (OpenAI-compatible chat completions)
LLM_API_KEY = os.getenv("LLM_API_KEY")
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://api.groq.com/openai/v1")
LLM_MODEL = os.getenv("LLM_MODEL", "llama-3.3-70b-versatile")
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", 120))

# Logging
LOG_DIR = os.getenv("LOG_DIR", "logs")
