from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class SecretsError(RuntimeError):
    """Raised when credentials cannot be loaded from AWS Secrets Manager."""


def _secrets_client(region: Optional[str]):
    if region:
        return boto3.client("secretsmanager", region_name=region)
    return boto3.client("secretsmanager")


def fetch_secret_values(secret_name: str, region: Optional[str] = None) -> Dict[str, Any]:
    """Return the JSON object stored under ``secret_name``.

    Keys mirror the environment variable names read by ``get_settings`` so a
    secret can carry any of them (``GROQ_API_KEY``, ``SUPABASE_KEY``, ...).
    """
    client = _secrets_client(region)
    try:
        data = client.get_secret_value(SecretId=secret_name)
    except (BotoCoreError, ClientError) as exc:
        logger.error("Error fetching secret %s: %s", secret_name, exc)
        raise SecretsError(f"Could not read secret '{secret_name}': {exc}") from exc

    secret_string = data.get("SecretString")
    if not secret_string:
        raise SecretsError(f"Secret '{secret_name}' has no SecretString.")
    try:
        values = json.loads(secret_string)
    except json.JSONDecodeError as exc:
        raise SecretsError(f"Secret '{secret_name}' is not valid JSON.") from exc
    if not isinstance(values, dict):
        raise SecretsError(f"Secret '{secret_name}' must be a JSON object.")
    logger.info("Loaded %d credential(s) from secret %s", len(values), secret_name)
    return values
