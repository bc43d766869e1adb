"""
Configuration for the feature flag impact analyzer.
All values come from the environment (optionally via a .env file).
"""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/flag_impact.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Language model configuration
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "ollama")  # ollama|mock
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.3:70b")
OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://localhost:11434")

# Prediction calls favor determinism, chat calls favor fluency
PREDICTION_MAX_TOKENS = int(os.getenv("PREDICTION_MAX_TOKENS", "1024"))
PREDICTION_TEMPERATURE = float(os.getenv("PREDICTION_TEMPERATURE", "0.3"))
CHAT_MAX_TOKENS = int(os.getenv("CHAT_MAX_TOKENS", "512"))
CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.7"))

# Anomaly detection
ANOMALY_DEDUP_ENABLED = os.getenv("ANOMALY_DEDUP_ENABLED", "true").lower() == "true"

# API server
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8787"))

SERVICE_NAME = "Feature Flag Impact Analyzer"
VERSION = "1.0.0"


def get_db_path() -> str:
    """Database path, read at call time so tests can point at a temp file."""
    return os.getenv("DB_PATH", DB_PATH)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def dedup_enabled():
    """Check if repeated scans over an unchanged metrics window are suppressed."""
    return os.getenv("ANOMALY_DEDUP_ENABLED", "true" if ANOMALY_DEDUP_ENABLED else "false").lower() == "true"


def get_llm_provider() -> str:
    """Get configured language model provider (ollama|mock)."""
    return os.getenv("LLM_PROVIDER", LLM_PROVIDER).lower()


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if get_llm_provider() not in ["ollama", "mock"]:
        issues.append(f"Invalid LLM_PROVIDER: {get_llm_provider()}")

    if PREDICTION_MAX_TOKENS < 1:
        issues.append("PREDICTION_MAX_TOKENS must be >= 1")

    if CHAT_MAX_TOKENS < 1:
        issues.append("CHAT_MAX_TOKENS must be >= 1")

    for name, value in (("PREDICTION_TEMPERATURE", PREDICTION_TEMPERATURE),
                        ("CHAT_TEMPERATURE", CHAT_TEMPERATURE)):
        if not 0.0 <= value <= 2.0:
            issues.append(f"{name} must be between 0 and 2")

    return issues
