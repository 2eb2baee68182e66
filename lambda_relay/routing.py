"""routing.py — Resolve a function name (and owning organization) into an invocable address.

Deployed organizations are looked up in a Secrets Manager secret mapping
organization code -> AWS account id, fetched once per process. In local mode
the secret is never read: organizations are routed to emulated Lambda
endpoints listed in ``LOCAL_SERVICE_PORTS``.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from lambda_relay import aws_clients, config, naming
from lambda_relay.errors import NotFoundError, RelayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Route:
    """Where to send an invocation and which account's role to assume, if any."""

    address: str
    account_id: Optional[str] = None
    endpoint_url: Optional[str] = None


class AccountDirectory:
    """Organization code -> account id, backed by a cached secret."""

    def __init__(self, secrets_client=None, secret_name: Optional[str] = None) -> None:
        self._secrets_client = secrets_client
        self._secret_name = secret_name
        self._accounts: Optional[Dict[str, Any]] = None

    @property
    def secret_name(self) -> str:
        return self._secret_name or config.ACCOUNTS_SECRET_NAME

    def _fetch(self) -> Dict[str, Any]:
        client = self._secrets_client or aws_clients._get_secretsmanager()
        try:
            response = client.get_secret_value(SecretId=self.secret_name)
            accounts = json.loads(response.get("SecretString") or "null")
        except (BotoCoreError, ClientError, ValueError) as exc:
            logger.warning("[WARNING] Could not read secret %s: %s", self.secret_name, exc)
            accounts = None

        if not accounts or not isinstance(accounts, dict):
            raise NotFoundError("Accounts secret is missing", RelayError.codes["ACCOUNTS_SECRET_MISSING"])
        return accounts

    def get_account_id(self, organization_code: str) -> str:
        if self._accounts is None:
            self._accounts = self._fetch()
        account_id = self._accounts.get(organization_code)
        if not account_id:
            raise NotFoundError(
                f"No account registered for organization {organization_code}",
                RelayError.codes["NO_ROUTE"],
            )
        return str(account_id)


class NameResolver:
    """Turn (function name, owning organization) into a Route."""

    def __init__(self, directory: Optional[AccountDirectory] = None) -> None:
        self.directory = directory or AccountDirectory()

    def resolve_local(self, function_name: str) -> Route:
        return Route(address=naming.get_function_name(function_name))

    def _resolve_remote(self, function_name: str, organization_code: str) -> Route:
        if config.is_local_env():
            port = config.LOCAL_SERVICE_PORTS.get(organization_code)
            if not port:
                raise NotFoundError(
                    f"No local route for organization {organization_code}",
                    RelayError.codes["NO_ROUTE"],
                )
            return Route(
                address=naming.get_api_function_name(function_name, "local", organization_code),
                endpoint_url=f"http://localhost:{port}/api",
            )

        account_id = self.directory.get_account_id(organization_code)
        return Route(
            address=naming.get_api_function_name(function_name, account_id, organization_code),
            account_id=account_id,
        )

    async def resolve(self, function_name: str, organization_code: Optional[str] = None) -> Route:
        if not organization_code:
            return self.resolve_local(function_name)
        return await asyncio.to_thread(self._resolve_remote, function_name, organization_code)
