"""invoker.py — Build and send invocations to other Lambda functions.

Three call shapes:

    call(name, body)                         same service, no tenant, Event mode
    organization_call(name, sessions, bodies) same service, one invocation per
                                             (session, body) pair, Event mode
    cross_service_call(org, name, body, session)
                                             function owned by another
                                             organization, RequestResponse mode

Every input is validated before any network call. Fan-out branches run
concurrently; all of them are awaited and the first failure (in request
order) is raised afterwards.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from lambda_relay import aws_clients, config, offload
from lambda_relay.credentials import CredentialCache
from lambda_relay.errors import RelayError, RemoteFailureStatus, TransportError, ValidationError
from lambda_relay.offload import BlobStore, offload_body
from lambda_relay.routing import NameResolver, Route
from lambda_relay.session import (
    InvocationEnvelope,
    InvocationSlot,
    TenantSession,
    coerce_session,
    current_invocation,
)

logger = logging.getLogger(__name__)

EVENT = "Event"
REQUEST_RESPONSE = "RequestResponse"

FAILURE_STATUS = 400


# ---------------------------------------------------------------------------
# Validation and expansion
# ---------------------------------------------------------------------------


def validate_function_name(function_name: Any) -> None:
    if function_name is None or function_name == "":
        raise ValidationError("Invoker needs a function name", RelayError.codes["NO_FUNCTION_NAME"])
    if not isinstance(function_name, str) or not function_name.strip():
        raise ValidationError(
            "Invalid function name, must be a non-empty string",
            RelayError.codes["INVALID_FUNCTION_NAME"],
        )


def normalize_body(body: Any) -> Any:
    """Falsy bodies and empty objects mean "no body"."""
    if not body:
        return None
    return body


def get_bodies(body: Any) -> List[Any]:
    if not isinstance(body, list):
        return [normalize_body(body)]
    if not body:
        return [None]
    return [normalize_body(item) for item in body]


def get_sessions(sessions: Any) -> List[TenantSession]:
    if sessions is None or sessions == "" or sessions == []:
        raise ValidationError("Invoker needs at least one session", RelayError.codes["NO_SESSION"])
    if not isinstance(sessions, list):
        sessions = [sessions]
    return [coerce_session(session) for session in sessions]


def expand(sessions: Sequence[Optional[TenantSession]], bodies: Sequence[Any]) -> List[InvocationEnvelope]:
    """Cartesian product, sessions outer and bodies inner, preserving input order."""
    sessions = list(sessions) or [None]
    bodies = list(bodies) or [None]
    return [InvocationEnvelope(session=session, body=body) for session in sessions for body in bodies]


def _validate_organization_code(organization_code: Any) -> None:
    if not isinstance(organization_code, str) or not organization_code.strip():
        raise ValidationError(
            "Invalid organization code, must be a non-empty string",
            RelayError.codes["INVALID_ORGANIZATION"],
        )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


def _read_payload(raw: Any) -> Any:
    if raw is None:
        return None
    if hasattr(raw, "read"):
        raw = raw.read()
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def parse_response(response: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize a Lambda invoke response into ``{statusCode, payload}``."""
    result: Dict[str, Any] = {
        "statusCode": response.get("StatusCode"),
        "payload": _read_payload(response.get("Payload")),
    }
    if response.get("FunctionError"):
        result["functionError"] = response["FunctionError"]
    return result


def _status_code(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return None


def parse_remote_response(response: Dict[str, Any]) -> Dict[str, Any]:
    """Lift the status reported by a remote API function above the transport status."""
    result = parse_response(response)
    payload = result["payload"]
    remote_status = _status_code(payload.get("statusCode")) if isinstance(payload, dict) else None

    if result.get("functionError"):
        result["statusCode"] = 500
    elif remote_status is not None:
        result["statusCode"] = remote_status
        result["payload"] = payload.get("body")
        if isinstance(result["payload"], str):
            result["payload"] = _read_payload(result["payload"])
    return result


async def _gather_all(coros: Iterable) -> List[Any]:
    results = await asyncio.gather(*coros, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


# ---------------------------------------------------------------------------
# Invoker
# ---------------------------------------------------------------------------


class Invoker:
    invocation_type = EVENT

    def __init__(
        self,
        credentials: Optional[CredentialCache] = None,
        resolver: Optional[NameResolver] = None,
        blob_store: Optional[BlobStore] = None,
        slot: Optional[InvocationSlot] = None,
    ) -> None:
        self.credentials = credentials or CredentialCache()
        self.resolver = resolver or NameResolver()
        self.blob_store = blob_store
        self.slot = slot if slot is not None else current_invocation

    async def call(
        self,
        function_name: str,
        body: Any = None,
        *,
        fixed_properties: Sequence[str] = (),
    ) -> List[Dict[str, Any]]:
        """Invoke a function of this service once per body."""
        validate_function_name(function_name)
        route = self.resolver.resolve_local(function_name)
        envelopes = expand([None], get_bodies(body))

        client = self.credentials.get_client()
        return await _gather_all(
            self._send(client, route, self.invocation_type, envelope, fixed_properties)
            for envelope in envelopes
        )

    async def organization_call(
        self,
        function_name: str,
        sessions: Any,
        bodies: Any = None,
        *,
        fixed_properties: Sequence[str] = (),
    ) -> List[Dict[str, Any]]:
        """Invoke a function of this service once per (session, body) pair."""
        validate_function_name(function_name)
        tenant_sessions = get_sessions(sessions)
        route = self.resolver.resolve_local(function_name)
        envelopes = expand(tenant_sessions, get_bodies(bodies))

        client = self.credentials.get_client()
        return await _gather_all(
            self._send(client, route, self.invocation_type, envelope, fixed_properties)
            for envelope in envelopes
        )

    async def cross_service_safe_call(
        self,
        organization_code: str,
        function_name: str,
        body: Any = None,
        session: Any = None,
    ) -> Dict[str, Any]:
        """Call a function owned by another organization; failure statuses are returned, not raised."""
        validate_function_name(function_name)
        _validate_organization_code(organization_code)
        tenant_session = coerce_session(session) if session else None
        envelope = InvocationEnvelope(session=tenant_session, body=normalize_body(body))

        route = await self.resolver.resolve(function_name, organization_code)
        client = await self._client_for_route(route)

        response = await self._send(client, route, REQUEST_RESPONSE, envelope, (), raw=True)
        return parse_remote_response(response)

    async def cross_service_call(
        self,
        organization_code: str,
        function_name: str,
        body: Any = None,
        session: Any = None,
    ) -> Dict[str, Any]:
        """Like ``cross_service_safe_call`` but raises RemoteFailureStatus on status >= 400."""
        result = await self.cross_service_safe_call(organization_code, function_name, body, session)
        if result["statusCode"] is not None and result["statusCode"] >= FAILURE_STATUS:
            raise RemoteFailureStatus(result["statusCode"], result["payload"])
        return result

    async def recall(self) -> Dict[str, Any]:
        """Re-invoke the executing function with the envelope it received."""
        if not self.slot.function_name:
            raise ValidationError("No function is currently executing", RelayError.codes["NO_FUNCTION_NAME"])

        params: Dict[str, Any] = {
            "FunctionName": self.slot.function_name,
            "InvocationType": self.invocation_type,
        }
        if self.slot.payload:
            params["Payload"] = offload.dumps(self.slot.payload)

        response = await self._invoke(self.credentials.get_client(), params)
        return parse_response(response)

    # -- internals ------------------------------------------------------------

    async def _client_for_route(self, route: Route):
        if route.endpoint_url:
            return aws_clients._build_lambda_client(endpoint_url=route.endpoint_url)
        if route.account_id:
            return await self.credentials.get_client_for_organization(route.account_id)
        return self.credentials.get_client()

    async def _send(
        self,
        client,
        route: Route,
        invocation_type: str,
        envelope: InvocationEnvelope,
        fixed_properties: Sequence[str],
        raw: bool = False,
    ):
        body = await offload_body(config.INVOKE_OFFLOAD_PREFIX, envelope.body, fixed_properties, self.blob_store)
        payload = InvocationEnvelope(session=envelope.session, body=body).to_payload()

        params: Dict[str, Any] = {"FunctionName": route.address, "InvocationType": invocation_type}
        if payload:
            params["Payload"] = offload.dumps(payload)

        response = await self._invoke(client, params)
        return response if raw else parse_response(response)

    async def _invoke(self, client, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(client.invoke, **params)
        except (BotoCoreError, ClientError) as exc:
            logger.error("[ERROR] Invocation of %s failed: %s", params.get("FunctionName"), exc)
            raise TransportError(f"Could not invoke {params.get('FunctionName')}: {exc}") from exc
