"""config.py — Central configuration — environment variables, constants, logging.

Every consumer reads these attributes at call time (``config.S3_BUCKET``),
so callers and tests may override them after import.

Environment variables:
    SERVICE_NAME             code of the service this process belongs to
    SERVICE_ENV              deployment mode, default: local
    AWS_REGION               default: us-east-1
    AWS_LAMBDA_FUNCTION_NAME set by the Lambda runtime
    S3_BUCKET                blob offload bucket (empty disables offload)
    REMOTE_INVOKE_ROLE_NAME  default: LambdaRemoteInvoke
    ROLE_SESSION_DURATION    seconds, default: 1800
    ACCOUNTS_SECRET_NAME     default: AccountsIdsByService
    LOCAL_SERVICE_PORTS      JSON map organization code -> port (local mode only)
    MS_PORT                  local port of this service's Lambda emulator
    LOG_LEVEL                default: INFO
"""
from __future__ import annotations

import json
import logging
import os
from typing import Dict


def _parse_ports(raw: str) -> Dict[str, str]:
    """Return a code -> port map from a JSON env value; invalid JSON yields {}."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {str(code): str(port) for code, port in parsed.items() if port}


__all__ = [
    "ACCOUNTS_SECRET_NAME",
    "AWS_LAMBDA_FUNCTION_NAME",
    "AWS_REGION",
    "BLOB_ID_ALPHABET",
    "BLOB_ID_LENGTH",
    "ENDED_EVENT",
    "INVOKE_OFFLOAD_PREFIX",
    "LOCAL_ENV",
    "LOCAL_SERVICE_PORTS",
    "LOG_LEVEL",
    "MS_PORT",
    "PAYLOAD_SIZE_THRESHOLD",
    "REMOTE_INVOKE_ROLE_NAME",
    "ROLE_SESSION_DURATION",
    "S3_BUCKET",
    "SERVICE_ENV",
    "SERVICE_NAME",
    "WORKFLOW_OFFLOAD_PREFIX",
    "is_local_env",
    "logger",
]

# ---------------------------------------------------------------------------
# Runtime / deployment
# ---------------------------------------------------------------------------

LOCAL_ENV = "local"

SERVICE_NAME: str = os.environ.get("SERVICE_NAME", "")
SERVICE_ENV: str = os.environ.get("SERVICE_ENV", LOCAL_ENV)
AWS_REGION: str = os.environ.get("AWS_REGION", "us-east-1")
AWS_LAMBDA_FUNCTION_NAME: str = os.environ.get("AWS_LAMBDA_FUNCTION_NAME", "")
MS_PORT: str = os.environ.get("MS_PORT", "")
LOCAL_SERVICE_PORTS: Dict[str, str] = _parse_ports(os.environ.get("LOCAL_SERVICE_PORTS", ""))

# ---------------------------------------------------------------------------
# Cross-organization credentials
# ---------------------------------------------------------------------------

REMOTE_INVOKE_ROLE_NAME: str = os.environ.get("REMOTE_INVOKE_ROLE_NAME", "LambdaRemoteInvoke")
ROLE_SESSION_DURATION: int = int(os.environ.get("ROLE_SESSION_DURATION", "1800"))  # 30 minutes
ACCOUNTS_SECRET_NAME: str = os.environ.get("ACCOUNTS_SECRET_NAME", "AccountsIdsByService")

# ---------------------------------------------------------------------------
# Payload offload
# ---------------------------------------------------------------------------

S3_BUCKET: str = os.environ.get("S3_BUCKET", "")

# Lambda rejects payloads above 262,144 bytes.
PAYLOAD_SIZE_THRESHOLD = 256_000
INVOKE_OFFLOAD_PREFIX = "lambda-payloads"
WORKFLOW_OFFLOAD_PREFIX = "step-function-payloads"
BLOB_ID_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ123456789"
BLOB_ID_LENGTH = 10

# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

ENDED_EVENT = "relay.ended"


def is_local_env() -> bool:
    return SERVICE_ENV == LOCAL_ENV


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO").upper()

logger = logging.getLogger("lambda_relay")
logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
