"""session.py — Tenant sessions, invocation envelopes and the recall slot.

Wire shape of an envelope (the contract shared with other runtimes):

    {
        "session": {"organizationCode": "acme", "userId": "u-1"},
        "body": {...},
        "taskToken": "...",
        "workflowContext": {...},
        "stateMachine": {...}
    }

Every key is optional; absent keys are omitted rather than sent as null,
except on workflow-step responses where ``session`` and ``body`` are always
present.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from lambda_relay.errors import RelayError, ValidationError

SESSION_ORGANIZATION_KEY = "organizationCode"
SESSION_USER_KEY = "userId"


@dataclass(frozen=True)
class TenantSession:
    """The organization (and optionally the user) an invocation acts for."""

    organization_code: Optional[str] = None
    user_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Optional[Mapping[str, Any]]) -> "TenantSession":
        if not payload:
            return cls()
        extra = {
            key: value
            for key, value in payload.items()
            if key not in (SESSION_ORGANIZATION_KEY, SESSION_USER_KEY)
        }
        return cls(
            organization_code=payload.get(SESSION_ORGANIZATION_KEY) or None,
            user_id=payload.get(SESSION_USER_KEY) or None,
            extra=extra,
        )

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.extra)
        if self.organization_code:
            payload[SESSION_ORGANIZATION_KEY] = self.organization_code
        if self.user_id:
            payload[SESSION_USER_KEY] = self.user_id
        return payload

    @property
    def is_tenant_scoped(self) -> bool:
        return bool(self.organization_code)


def coerce_session(value: Any) -> TenantSession:
    """Accept a bare organization code, a TenantSession or a session mapping.

    Raises ValidationError unless the value carries a non-empty organization code.
    """
    if isinstance(value, TenantSession):
        session = value
    elif isinstance(value, str):
        session = TenantSession(organization_code=value.strip() or None)
    elif isinstance(value, Mapping):
        code = value.get(SESSION_ORGANIZATION_KEY)
        if code is not None and not isinstance(code, str):
            raise ValidationError(
                "Invalid Session. Organization code must be a string",
                RelayError.codes["INVALID_ORGANIZATION"],
            )
        session = TenantSession.from_payload(value)
    else:
        raise ValidationError(
            "Invalid Session. Must be an organization code or a session object",
            RelayError.codes["INVALID_SESSION"],
        )

    if not session.is_tenant_scoped:
        raise ValidationError(
            "Invalid Session. Organization code must be a non-empty string",
            RelayError.codes["INVALID_SESSION"],
        )
    return session


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InvocationEnvelope:
    """One invocation on the wire. Fields hold raw inbound values until validated."""

    session: Any = None
    body: Any = None
    task_token: Any = None
    workflow_context: Any = None
    state_machine: Any = None

    @classmethod
    def from_event(cls, event: Optional[Mapping[str, Any]]) -> "InvocationEnvelope":
        event = event or {}
        return cls(
            session=event.get("session"),
            body=event.get("body"),
            task_token=event.get("taskToken"),
            workflow_context=event.get("workflowContext"),
            state_machine=event.get("stateMachine"),
        )

    @property
    def is_workflow_step(self) -> bool:
        return self.workflow_context is not None or self.state_machine is not None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        session = self.session.to_payload() if isinstance(self.session, TenantSession) else self.session
        if session:
            payload["session"] = session
        if self.body is not None:
            payload["body"] = self.body
        if self.task_token is not None:
            payload["taskToken"] = self.task_token
        if self.workflow_context is not None:
            payload["workflowContext"] = self.workflow_context
        if self.state_machine is not None:
            payload["stateMachine"] = self.state_machine
        return payload


# ---------------------------------------------------------------------------
# Recall slot
# ---------------------------------------------------------------------------


class InvocationSlot:
    """Remembers the function currently executing and the payload it received.

    The dispatcher records into it, ``Invoker.recall`` reads from it.
    """

    def __init__(self) -> None:
        self.function_name: Optional[str] = None
        self.payload: Optional[Dict[str, Any]] = None

    def record(self, function_name: Optional[str], payload: Optional[Dict[str, Any]]) -> None:
        self.function_name = function_name
        self.payload = payload or None

    def clear(self) -> None:
        self.function_name = None
        self.payload = None


current_invocation = InvocationSlot()
