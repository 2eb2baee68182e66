"""handler.py — Entry points that run a function for an inbound Lambda event.

    from lambda_relay import make_lambda_handler
    from my_service.functions import SyncProducts

    lambda_handler = make_lambda_handler(SyncProducts)

By default an exception raised by the function's own hooks is logged and
returned as ``{"errorKind": ..., "message": ...}``; envelope validation
errors always propagate. Deployments that want every failure to surface as
a Lambda error use ``RaiseErrorsStrategy``.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from lambda_relay import config, naming
from lambda_relay.dispatcher import Dispatcher
from lambda_relay.errors import TargetExecutionError, format_error
from lambda_relay.lifecycle import LifecycleEmitter, events
from lambda_relay.offload import BlobStore
from lambda_relay.session import InvocationEnvelope, InvocationSlot, current_invocation

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error strategies
# ---------------------------------------------------------------------------


class FormatErrorsStrategy:
    """Return target execution errors as structured results; re-raise anything else."""

    def handle(self, error: BaseException) -> Any:
        if isinstance(error, TargetExecutionError):
            logger.error("[ERROR] Function failed: %s: %s", error.kind, error.message)
            return format_error(error)
        raise error


class RaiseErrorsStrategy:
    def handle(self, error: BaseException) -> Any:
        raise error


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class Handler:
    error_strategy = FormatErrorsStrategy()
    emitter: LifecycleEmitter = events
    slot: InvocationSlot = current_invocation
    blob_store: Optional[BlobStore] = None

    @classmethod
    def prepare_event(cls, event: Any) -> Optional[Mapping[str, Any]]:
        return event

    @classmethod
    def record_invocation(cls, function_class: type, envelope: InvocationEnvelope) -> None:
        payload = InvocationEnvelope(session=envelope.session, body=envelope.body).to_payload()
        cls.slot.record(naming.get_current_function_name(function_class), payload)

    @classmethod
    async def handle(cls, function_class: Any, event: Any = None) -> Any:
        try:
            envelope = InvocationEnvelope.from_event(cls.prepare_event(event))
            dispatcher = Dispatcher(function_class, envelope, cls.blob_store)
            return await dispatcher.run(on_validated=lambda: cls.record_invocation(function_class, envelope))
        except Exception as error:
            return cls.error_strategy.handle(error)
        finally:
            await cls.emitter.emit(config.ENDED_EVENT)


class ParallelHandler(Handler):
    """Runs a function once for the outputs of a workflow parallel/map state."""

    @classmethod
    def prepare_event(cls, event: Any) -> Dict[str, Any]:
        prepared: Dict[str, Any] = {"body": []}
        bodies: List[Any] = prepared["body"]

        for item in event or []:
            item = item or {}
            if item.get("session") and "session" not in prepared:
                prepared["session"] = item["session"]
            if item.get("stateMachine") is not None and "stateMachine" not in prepared:
                prepared["stateMachine"] = item["stateMachine"]
            bodies.append(item.get("body"))

        return prepared


def make_lambda_handler(function_class: type, handler: type = Handler) -> Callable[[Any, Any], Any]:
    """Build the synchronous ``lambda_handler(event, context)`` for ``function_class``."""

    def lambda_handler(event: Any, context: Any) -> Any:
        return asyncio.run(handler.handle(function_class, event))

    lambda_handler.__name__ = f"{function_class.__name__}_handler"
    return lambda_handler
