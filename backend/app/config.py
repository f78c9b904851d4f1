from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .secrets_store import fetch_secret_values

ROOT_DIR = Path(__file__).resolve().parents[1]
ENV_PATH = ROOT_DIR / ".env"

if ENV_PATH.exists():
    load_dotenv(ENV_PATH)  # Load project .env once at import time.
else:
    load_dotenv()  # Fallback: search upwards from CWD.


def _lookup(name: str, secrets: Mapping[str, object]) -> Optional[str]:
    if name in secrets and secrets[name] not in (None, ""):
        return str(secrets[name])
    return os.getenv(name)


def _env(name: str, secrets: Mapping[str, object], default: str | None = None) -> str:
    value = _lookup(name, secrets)
    if value is None or value == "":
        value = default
    if value is None or value == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _env_int(name: str, secrets: Mapping[str, object], default: int) -> int:
    raw = _lookup(name, secrets)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be an integer") from exc


def _env_float(name: str, secrets: Mapping[str, object], default: float) -> float:
    raw = _lookup(name, secrets)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be a number") from exc


def _env_bool(name: str, secrets: Mapping[str, object], default: bool) -> bool:
    raw = _lookup(name, secrets)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_optional(name: str, secrets: Mapping[str, object]) -> Optional[str]:
    value = _lookup(name, secrets)
    if value is None or value.strip() == "":
        return None
    return value


@dataclass(frozen=True)
class Settings:
    supabase_url: str
    supabase_key: str

    app_env: str
    cors_allow_origins: tuple[str, ...]
    log_level: str
    company_name: str

    embedding_provider: str
    embedding_model: str
    embedding_dimension: int
    embedding_cache_dir: str
    openai_embedding_model: str
    vector_table: str
    vector_query_name: str
    retrieval_k: int

    llm_provider: str
    llm_temperature: float
    groq_api_key: Optional[str]
    groq_model: str
    openai_api_key: Optional[str]
    openai_model: str

    chat_response_mode: str
    chat_rate_limit_per_minute: int

    escalation_enabled: bool
    escalation_email_to: Optional[str]
    escalation_email_from: Optional[str]
    escalation_sender_name: str
    smtp_username: Optional[str]
    smtp_password: Optional[str]
    smtp_host: str
    smtp_port: int

    @property
    def streaming(self) -> bool:
        return self.chat_response_mode.lower() != "json"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    secret_name = os.getenv("AWS_SECRET_NAME")
    secrets: Mapping[str, object] = {}
    if secret_name:
        secrets = fetch_secret_values(secret_name, os.getenv("AWS_REGION"))

    cors_raw = _lookup("CORS_ALLOW_ORIGINS", secrets)
    if cors_raw:
        origins = tuple(origin.strip() for origin in cors_raw.split(",") if origin.strip())
    else:
        origins = (
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        )

    company_name = _env("COMPANY_NAME", secrets, "BIMWERX")

    return Settings(
        supabase_url=_env("SUPABASE_URL", secrets),
        supabase_key=_env("SUPABASE_KEY", secrets),
        app_env=_env("APP_ENV", secrets, "local"),
        cors_allow_origins=origins,
        log_level=_env("LOG_LEVEL", secrets, "INFO").upper(),
        company_name=company_name,
        embedding_provider=_env("EMBEDDING_PROVIDER", secrets, "local").lower(),
        embedding_model=_env("EMBEDDING_MODEL", secrets, "BAAI/bge-base-en-v1.5"),
        embedding_dimension=_env_int("EMBEDDING_DIMENSION", secrets, 768),
        embedding_cache_dir=_env("EMBEDDING_CACHE_DIR", secrets, "/tmp/local_cache"),
        openai_embedding_model=_env("OPENAI_EMBEDDING_MODEL", secrets, "text-embedding-3-small"),
        vector_table=_env("VECTOR_TABLE", secrets, "documents"),
        vector_query_name=_env("VECTOR_QUERY_NAME", secrets, "match_documents"),
        retrieval_k=_env_int("RETRIEVAL_K", secrets, 4),
        llm_provider=_env("LLM_PROVIDER", secrets, "groq").lower(),
        llm_temperature=_env_float("LLM_TEMPERATURE", secrets, 0.0),
        groq_api_key=_env_optional("GROQ_API_KEY", secrets),
        groq_model=_env("GROQ_MODEL", secrets, "llama3-70b-8192"),
        openai_api_key=_env_optional("OPENAI_API_KEY", secrets),
        openai_model=_env("OPENAI_MODEL", secrets, "gpt-4o-mini"),
        chat_response_mode=_env("CHAT_RESPONSE_MODE", secrets, "stream").lower(),
        chat_rate_limit_per_minute=_env_int("CHAT_RATE_LIMIT_PER_MINUTE", secrets, 60),
        escalation_enabled=_env_bool("ESCALATION_ENABLED", secrets, True),
        escalation_email_to=_env_optional("ESCALATION_EMAIL_TO", secrets),
        escalation_email_from=_env_optional("ESCALATION_EMAIL_FROM", secrets),
        escalation_sender_name=_env("ESCALATION_SENDER_NAME", secrets, f"{company_name} Bob"),
        smtp_username=_env_optional("SMTP_USERNAME", secrets),
        smtp_password=_env_optional("SMTP_PASSWORD", secrets),
        smtp_host=_env("SMTP_HOST", secrets, "smtp.gmail.com"),
        smtp_port=_env_int("SMTP_PORT", secrets, 587),
    )
