"""aws_clients.py — Lazy-singleton AWS service clients.

Clients are created on first call and cached for subsequent invocations so
cold starts only pay the boto3 construction cost for the services they use.
Role-scoped Lambda clients are never cached here; see ``credentials.py``.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import boto3
from botocore.config import Config

from lambda_relay import config

# ---------------------------------------------------------------------------
# Client singletons
# ---------------------------------------------------------------------------

_lambda = None
_sts = None
_s3 = None
_sfn = None
_secretsmanager = None

# Invocations, exchanges and blob writes are never retried inside the relay.
_NO_RETRIES = Config(retries={"max_attempts": 0, "mode": "standard"})


def _local_endpoint(port: Optional[str]) -> Optional[str]:
    return f"http://localhost:{port}/api" if port else None


def _build_lambda_client(
    credentials: Optional[Dict[str, Any]] = None,
    endpoint_url: Optional[str] = None,
):
    """Build a Lambda client, optionally with assumed-role credentials or a local endpoint."""
    kwargs: Dict[str, Any] = {"region_name": config.AWS_REGION, "config": _NO_RETRIES}
    if credentials:
        kwargs["aws_access_key_id"] = credentials["accessKeyId"]
        kwargs["aws_secret_access_key"] = credentials["secretAccessKey"]
        kwargs["aws_session_token"] = credentials["sessionToken"]
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url
    return boto3.client("lambda", **kwargs)


def _get_lambda():
    """Get (or create) the Lambda client acting with this process's own identity."""
    global _lambda
    if _lambda is None:
        endpoint = _local_endpoint(config.MS_PORT) if config.is_local_env() else None
        _lambda = _build_lambda_client(endpoint_url=endpoint)
    return _lambda


def _get_sts():
    """Get (or create) the STS client singleton."""
    global _sts
    if _sts is None:
        _sts = boto3.client("sts", region_name=config.AWS_REGION, config=_NO_RETRIES)
    return _sts


def _get_s3():
    """Get (or create) the S3 client singleton."""
    global _s3
    if _s3 is None:
        _s3 = boto3.client("s3", region_name=config.AWS_REGION, config=_NO_RETRIES)
    return _s3


def _get_sfn():
    """Get (or create) the Step Functions client singleton."""
    global _sfn
    if _sfn is None:
        _sfn = boto3.client(
            "stepfunctions",
            region_name=config.AWS_REGION,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )
    return _sfn


def _get_secretsmanager():
    """Get (or create) the Secrets Manager client singleton."""
    global _secretsmanager
    if _secretsmanager is None:
        _secretsmanager = boto3.client(
            "secretsmanager",
            region_name=config.AWS_REGION,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )
    return _secretsmanager
