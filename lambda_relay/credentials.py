"""credentials.py — Organization-scoped STS credentials and the Lambda clients built from them.

One entry per organization (AWS account) is held in process memory. An entry
is reused while ``now < expires_at`` and replaced, never mutated, once it
expires. There is deliberately no lock: two concurrent requests for an
uncached organization may both perform an exchange, and the last write wins.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from lambda_relay import aws_clients, config
from lambda_relay.errors import CredentialBrokerError

logger = logging.getLogger(__name__)

Clock = Callable[[], dt.datetime]

_CREDENTIAL_KEYS = ("AccessKeyId", "SecretAccessKey", "SessionToken", "Expiration")


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _as_aware(value: Any) -> dt.datetime:
    if isinstance(value, str):
        value = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value


@dataclass(frozen=True)
class CachedCredential:
    organization_id: str
    access_material: Dict[str, str]
    expires_at: dt.datetime
    client: Any

    def is_valid(self, now: dt.datetime) -> bool:
        return now < self.expires_at


class CredentialCache:
    """Hands out Lambda clients, assuming the remote-invoke role per organization."""

    def __init__(
        self,
        sts_client=None,
        client_factory: Optional[Callable[..., Any]] = None,
        clock: Optional[Clock] = None,
        base_client=None,
    ) -> None:
        self._sts_client = sts_client
        self._client_factory = client_factory or aws_clients._build_lambda_client
        self._clock = clock or _utc_now
        self._base_client = base_client
        self._entries: Dict[str, CachedCredential] = {}

    @property
    def sts(self):
        if self._sts_client is None:
            self._sts_client = aws_clients._get_sts()
        return self._sts_client

    def get_client(self):
        """Client acting with this process's own identity."""
        if self._base_client is None:
            self._base_client = aws_clients._get_lambda()
        return self._base_client

    def cached(self, organization_id: str) -> Optional[CachedCredential]:
        entry = self._entries.get(organization_id)
        if entry is None or not entry.is_valid(self._clock()):
            return None
        return entry

    async def get_client_for_organization(self, organization_id: str):
        """Client whose calls act through the remote-invoke role of ``organization_id``."""
        entry = self.cached(organization_id)
        if entry is not None:
            return entry.client

        logger.debug("Credential cache miss for organization %s", organization_id)
        access_material, expires_at = await asyncio.to_thread(self._exchange, organization_id)
        client = self._client_factory(credentials=access_material)

        self._entries[organization_id] = CachedCredential(
            organization_id=organization_id,
            access_material=access_material,
            expires_at=expires_at,
            client=client,
        )
        return client

    def _role_arn(self, organization_id: str) -> str:
        return f"arn:aws:iam::{organization_id}:role/{config.REMOTE_INVOKE_ROLE_NAME}"

    def _exchange(self, organization_id: str):
        role_arn = self._role_arn(organization_id)
        try:
            assumed = self.sts.assume_role(
                RoleArn=role_arn,
                RoleSessionName=config.SERVICE_NAME or "lambda-relay",
                DurationSeconds=config.ROLE_SESSION_DURATION,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("[WARNING] Error while trying to assume role %s: %s", role_arn, exc)
            raise CredentialBrokerError(
                "Could not assume role for external service Lambda invocation"
            ) from exc

        credentials = (assumed or {}).get("Credentials") or {}
        missing = [key for key in _CREDENTIAL_KEYS if not credentials.get(key)]
        if missing:
            logger.warning("[WARNING] Assume role %s returned no %s", role_arn, ", ".join(missing))
            raise CredentialBrokerError("Could not assume role for external service Lambda invocation")

        try:
            expires_at = _as_aware(credentials["Expiration"])
        except (AttributeError, TypeError, ValueError) as exc:
            raise CredentialBrokerError(f"Invalid credential expiration for role {role_arn}") from exc

        access_material = {
            "accessKeyId": credentials["AccessKeyId"],
            "secretAccessKey": credentials["SecretAccessKey"],
            "sessionToken": credentials["SessionToken"],
        }
        return access_material, expires_at

    def clear(self) -> None:
        self._entries.clear()
