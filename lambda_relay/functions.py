"""functions.py — Base classes for functions run by the dispatcher.

A function declares what it needs from the envelope through class
attributes and implements ``process`` (and optionally ``validate``):

    class SyncProducts(FunctionWithSessionAndPayload):
        struct = ProductsPayload          # pydantic model or any callable
        payload_fixed_properties = ("batchId",)

        async def process(self):
            ...

Both hooks default to a no-op, so a subclass only overrides what it uses.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Tuple

from lambda_relay import offload
from lambda_relay.session import TenantSession


@dataclass(frozen=True)
class FunctionContract:
    """Requirements a function declares about the envelope it accepts."""

    requires_session: bool = False
    requires_payload: bool = False
    requires_user: bool = False
    struct: Optional[Any] = None
    fixed_properties: Tuple[str, ...] = ()


class RemoteFunction:
    requires_session: bool = False
    requires_payload: bool = False
    requires_user: bool = False

    # A pydantic model class or a callable that validates/coerces the payload.
    struct: Optional[Callable[[Any], Any]] = None

    # Body fields kept inline when a workflow-step response is offloaded.
    payload_fixed_properties: Sequence[str] = ()

    def __init__(self) -> None:
        self.session: TenantSession = TenantSession()
        self.data: Any = None
        self.task_token: Optional[str] = None
        self.workflow_context: Optional[dict] = None
        self.state_machine: Any = None

    @classmethod
    def contract(cls) -> FunctionContract:
        return FunctionContract(
            requires_session=bool(cls.requires_session),
            requires_payload=bool(cls.requires_payload),
            requires_user=bool(cls.requires_user),
            struct=cls.struct,
            fixed_properties=tuple(cls.payload_fixed_properties or ()),
        )

    async def validate(self) -> None:
        """Extra validations; raise to reject the invocation."""
        return None

    async def process(self) -> Any:
        """The function's work. Only runs when every validation passed."""
        return None

    @staticmethod
    async def body_to_blob(prefix: str, data: Any, fixed_properties: Sequence[str] = ()) -> Any:
        return await offload.store_body(prefix, data, fixed_properties)

    @staticmethod
    async def body_from_blob(key: str) -> Any:
        return await offload.fetch_body(key)


class FunctionWithPayload(RemoteFunction):
    requires_payload = True


class FunctionWithSessionAndPayload(RemoteFunction):
    requires_session = True
    requires_payload = True
