"""lambda_relay — Invoke Lambda functions across services and organizations.

Provides:
    - Invoker: same-service, per-organization and cross-organization calls
    - CredentialCache: STS role credentials cached per organization
    - Oversized-payload offload to S3 and rehydration
    - Handler / ParallelHandler: validate and run a function for an inbound event
    - StepFunction: start, stop and list workflow executions
"""

from lambda_relay.credentials import CredentialCache
from lambda_relay.errors import (
    CredentialBrokerError,
    NotFoundError,
    RelayError,
    RemoteFailureStatus,
    TargetExecutionError,
    TransportError,
    ValidationError,
)
from lambda_relay.functions import FunctionWithPayload, FunctionWithSessionAndPayload, RemoteFunction
from lambda_relay.handler import (
    FormatErrorsStrategy,
    Handler,
    ParallelHandler,
    RaiseErrorsStrategy,
    make_lambda_handler,
)
from lambda_relay.invoker import Invoker
from lambda_relay.offload import offload_body, rehydrate_body
from lambda_relay.session import InvocationEnvelope, TenantSession
from lambda_relay.workflow import StepFunction

__version__ = "1.0.0"

__all__ = [
    "CredentialBrokerError",
    "CredentialCache",
    "FormatErrorsStrategy",
    "FunctionWithPayload",
    "FunctionWithSessionAndPayload",
    "Handler",
    "InvocationEnvelope",
    "Invoker",
    "NotFoundError",
    "ParallelHandler",
    "RaiseErrorsStrategy",
    "RelayError",
    "RemoteFailureStatus",
    "RemoteFunction",
    "StepFunction",
    "TargetExecutionError",
    "TenantSession",
    "TransportError",
    "ValidationError",
    "make_lambda_handler",
    "offload_body",
    "rehydrate_body",
]
