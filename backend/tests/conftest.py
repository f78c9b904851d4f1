from __future__ import annotations

import os
import sys
from dataclasses import replace
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "anon")

from app.config import Settings  # noqa: E402


def _base_settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_key="anon",
        app_env="test",
        cors_allow_origins=("http://localhost:3000",),
        log_level="DEBUG",
        company_name="BIMWERX",
        embedding_provider="local",
        embedding_model="BAAI/bge-base-en-v1.5",
        embedding_dimension=3,
        embedding_cache_dir="/tmp/local_cache",
        openai_embedding_model="text-embedding-3-small",
        vector_table="documents",
        vector_query_name="match_documents",
        retrieval_k=4,
        llm_provider="groq",
        llm_temperature=0.0,
        groq_api_key="test",
        groq_model="llama3-70b-8192",
        openai_api_key=None,
        openai_model="gpt-4o-mini",
        chat_response_mode="stream",
        chat_rate_limit_per_minute=60,
        escalation_enabled=True,
        escalation_email_to="alerts@example.com",
        escalation_email_from="noreply@example.com",
        escalation_sender_name="BIMWERX Bob",
        smtp_username="smtp@example.com",
        smtp_password="password",
        smtp_host="smtp.gmail.com",
        smtp_port=587,
    )


@pytest.fixture
def make_settings():
    def _make(**overrides) -> Settings:
        return replace(_base_settings(), **overrides)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()
