"""dispatcher.py — Validate an inbound envelope and run a function's lifecycle.

States:

    RECEIVED -> VALIDATED -> PREPARED -> EXECUTED -> COMPLETED
        |            |            |
        +------------+------------+--> FAILED

Any step that raises moves the dispatcher to FAILED and the error propagates
to the handler. Errors raised by the function's own ``validate``/``process``
hooks are wrapped in TargetExecutionError; every other failure is a
ValidationError raised before the function runs.
"""
from __future__ import annotations

import enum
import inspect
import logging
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel

from lambda_relay import config, offload
from lambda_relay.errors import RelayError, TargetExecutionError, ValidationError
from lambda_relay.functions import RemoteFunction
from lambda_relay.offload import BlobStore
from lambda_relay.session import InvocationEnvelope, TenantSession

logger = logging.getLogger(__name__)


class DispatchState(str, enum.Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    PREPARED = "prepared"
    EXECUTED = "executed"
    COMPLETED = "completed"
    FAILED = "failed"


def _coerce(struct: Any, data: Any) -> Any:
    if isinstance(struct, type) and issubclass(struct, BaseModel):
        return struct.model_validate(data)
    return struct(data)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class Dispatcher:
    def __init__(
        self,
        function_class: Any,
        envelope: InvocationEnvelope,
        blob_store: Optional[BlobStore] = None,
    ) -> None:
        self.state = DispatchState.RECEIVED
        self.envelope = envelope
        self.blob_store = blob_store
        self.function: Optional[RemoteFunction] = None
        self.result: Any = None

        try:
            self._validate_function_class(function_class)
        except RelayError:
            self._transition(DispatchState.FAILED)
            raise

        self.function_class = function_class
        self.contract = function_class.contract()

    # -- state handling -------------------------------------------------------

    def _transition(self, state: DispatchState) -> None:
        logger.debug("Dispatcher %s -> %s", self.state.value, state.value)
        self.state = state

    async def run(self, on_validated: Optional[Callable[[], None]] = None) -> Any:
        try:
            self.validate()
            if on_validated is not None:
                on_validated()
            await self.prepare()
            await self.execute()
            return await self.complete()
        except BaseException:
            self._transition(DispatchState.FAILED)
            raise

    # -- RECEIVED -> VALIDATED ------------------------------------------------

    @staticmethod
    def _validate_function_class(function_class: Any) -> None:
        if function_class is None:
            raise ValidationError("No Function is found", RelayError.codes["NO_FUNCTION"])
        if not isinstance(function_class, type) or not issubclass(function_class, RemoteFunction):
            raise ValidationError("Invalid Function", RelayError.codes["INVALID_FUNCTION"])

    def validate(self) -> None:
        session = self.envelope.session
        contract = self.contract

        if session is not None and not isinstance(session, dict):
            raise ValidationError("Invalid Session, must be an Object", RelayError.codes["INVALID_SESSION"])

        session = session or {}
        organization_code = session.get("organizationCode")
        user_id = session.get("userId")

        if contract.requires_session and not organization_code:
            raise ValidationError("Function must have an Organization", RelayError.codes["NO_SESSION"])

        if organization_code is not None and not isinstance(organization_code, str):
            raise ValidationError("Invalid Organization, must be a String", RelayError.codes["INVALID_ORGANIZATION"])

        if contract.requires_user and not user_id:
            raise ValidationError("Function must have User", RelayError.codes["NO_USER"])

        if user_id is not None and not isinstance(user_id, str):
            raise ValidationError("Invalid User ID, must be a String", RelayError.codes["INVALID_USER"])

        if contract.requires_payload and self.envelope.body is None:
            raise ValidationError("Function must have Payload", RelayError.codes["NO_PAYLOAD"])

        if self.envelope.task_token is not None and not isinstance(self.envelope.task_token, str):
            raise ValidationError("Task token must be a string if present", RelayError.codes["INVALID_TASK_TOKEN"])

        if self.envelope.workflow_context is not None and not isinstance(self.envelope.workflow_context, dict):
            raise ValidationError(
                "Invalid Workflow Context, must be an object if present",
                RelayError.codes["INVALID_WORKFLOW_CONTEXT"],
            )

        self._transition(DispatchState.VALIDATED)

    # -- VALIDATED -> PREPARED ------------------------------------------------

    async def _rehydrate(self, body: Any) -> Any:
        if isinstance(body, list):
            return [await offload.rehydrate_body(item, self.blob_store) for item in body]
        return await offload.rehydrate_body(body, self.blob_store)

    async def prepare(self) -> None:
        data = await self._rehydrate(self.envelope.body)

        function = self.function_class()
        function.session = TenantSession.from_payload(self.envelope.session)
        function.task_token = self.envelope.task_token
        function.workflow_context = self.envelope.workflow_context
        function.state_machine = self.envelope.state_machine

        if self.contract.struct is not None:
            try:
                data = _coerce(self.contract.struct, data)
            except Exception as exc:
                raise ValidationError(str(exc), RelayError.codes["INVALID_PAYLOAD"]) from exc
        function.data = data

        self.function = function
        self._transition(DispatchState.PREPARED)

    # -- PREPARED -> EXECUTED -------------------------------------------------

    async def execute(self) -> None:
        try:
            await _maybe_await(self.function.validate())
            self.result = await _maybe_await(self.function.process())
        except Exception as exc:
            raise TargetExecutionError(exc) from exc
        self._transition(DispatchState.EXECUTED)

    # -- EXECUTED -> COMPLETED ------------------------------------------------

    async def complete(self) -> Any:
        result = self.result
        if self.envelope.is_workflow_step:
            result = await self._workflow_response(result)
        self._transition(DispatchState.COMPLETED)
        return result

    async def _workflow_response(self, result: Any) -> Dict[str, Any]:
        if isinstance(result, dict) and ("session" in result or "body" in result):
            session = result.get("session")
            body = result.get("body")
        else:
            session = self.envelope.session
            body = result

        if isinstance(session, TenantSession):
            session = session.to_payload() or None

        if body is not None:
            body = await offload.offload_body(
                config.WORKFLOW_OFFLOAD_PREFIX,
                body,
                self.contract.fixed_properties,
                self.blob_store,
            )

        response: Dict[str, Any] = {"session": session or None, "body": body}
        if self.envelope.state_machine is not None:
            response["stateMachine"] = self.envelope.state_machine
        return response
