import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:4173",
    "http://localhost:3001",
]

DEFAULT_CHAT_URL = "https://us-south.ml.cloud.ibm.com/ml/v1/text/chat?version=2023-05-29"
DEFAULT_IAM_URL = "https://iam.cloud.ibm.com/identity/token"
DEFAULT_MODEL_ID = "ibm/granite-3-3-8b-instruct"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    return float(raw)


def _env_list(name: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, "").split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 3001
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_ORIGINS))
    log_level: str = "INFO"

    # Rooms
    room_eviction_seconds: float = 60.0

    # Liveness
    heartbeat_interval: float = 30.0
    heartbeat_timeout: float = 75.0

    # AI collaborator
    ibm_api_key: Optional[str] = None
    ibm_project_id: Optional[str] = None
    ibm_model_id: str = DEFAULT_MODEL_ID
    ibm_chat_url: str = DEFAULT_CHAT_URL
    ibm_iam_url: str = DEFAULT_IAM_URL
    ai_timeout_seconds: float = 60.0
    ai_fallback_on_failure: bool = False


def get_settings() -> Settings:
    """Build settings from the process environment (and .env, if present)."""
    origins = list(DEFAULT_ORIGINS)
    # Add env origins if present
    origins.extend(_env_list("CORS_ORIGINS"))

    return Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3001")),
        cors_origins=origins,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        room_eviction_seconds=_env_float("ROOM_EVICTION_SECONDS", 60.0),
        heartbeat_interval=_env_float("HEARTBEAT_INTERVAL", 30.0),
        heartbeat_timeout=_env_float("HEARTBEAT_TIMEOUT", 75.0),
        ibm_api_key=os.getenv("IBM_API_KEY") or None,
        ibm_project_id=os.getenv("IBM_PROJECT_ID") or None,
        ibm_model_id=os.getenv("IBM_MODEL_ID", DEFAULT_MODEL_ID),
        ibm_chat_url=os.getenv("IBM_CHAT_URL", DEFAULT_CHAT_URL),
        ibm_iam_url=os.getenv("IBM_IAM_URL", DEFAULT_IAM_URL),
        ai_timeout_seconds=_env_float("AI_TIMEOUT_SECONDS", 60.0),
        ai_fallback_on_failure=_env_bool("AI_FALLBACK_ON_FAILURE"),
    )
