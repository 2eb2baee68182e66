"""workflow.py — Start, stop and list Step Functions executions.

Execution input uses the same envelope as Lambda invocations:

    {"session": {"organizationCode": "acme"}, "body": {...}}

An input body that reaches the offload threshold is stored in S3 under
``step-function-payloads/`` and replaced by its reference.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Mapping, Optional

from lambda_relay import aws_clients, config, offload
from lambda_relay.errors import RelayError, ValidationError
from lambda_relay.offload import BlobStore, offload_body
from lambda_relay.session import InvocationEnvelope, TenantSession


def _is_blank(value: Any) -> bool:
    return isinstance(value, str) and not value.strip()


def _validate_arn(arn: Any) -> None:
    if not arn or not isinstance(arn, str):
        raise ValidationError("Arn cannot be empty and must be an string.", RelayError.codes["INVALID_ARN"])


class StepFunction:
    def __init__(self, client=None, blob_store: Optional[BlobStore] = None) -> None:
        self._client = client
        self.blob_store = blob_store

    @property
    def client(self):
        if self._client is None:
            self._client = aws_clients._get_sfn()
        return self._client

    def get_params(
        self,
        arn: Any,
        name: Any = None,
        organization_code: Any = None,
        data: Any = None,
    ) -> Dict[str, Any]:
        _validate_arn(arn)

        if _is_blank(name) or (name and not isinstance(name, str)):
            raise ValidationError(
                "Name cannot be empty and must be an string.",
                RelayError.codes["INVALID_EXECUTION_NAME"],
            )

        if _is_blank(organization_code) or (organization_code and not isinstance(organization_code, str)):
            raise ValidationError(
                "Organization code cannot be empty and must be an string.",
                RelayError.codes["INVALID_ORGANIZATION"],
            )

        if data is not None and not isinstance(data, Mapping):
            raise ValidationError("Data must be an object.", RelayError.codes["INVALID_PAYLOAD"])

        params: Dict[str, Any] = {"stateMachineArn": arn}
        if name:
            params["name"] = name

        session = TenantSession(organization_code=organization_code) if organization_code else None
        input_data = InvocationEnvelope(session=session, body=dict(data) if data else None).to_payload()
        if input_data:
            params["input"] = input_data
        return params

    async def start_execution(
        self,
        arn: str,
        name: Optional[str] = None,
        organization_code: Optional[str] = None,
        data: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        params = self.get_params(arn, name, organization_code, data)

        input_data = params.get("input")
        if input_data is not None:
            if "body" in input_data:
                input_data["body"] = await offload_body(
                    config.WORKFLOW_OFFLOAD_PREFIX, input_data["body"], (), self.blob_store
                )
            params["input"] = offload.dumps(input_data)

        return await asyncio.to_thread(self.client.start_execution, **params)

    async def stop_execution(
        self,
        execution_arn: str,
        cause: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Dict[str, Any]:
        _validate_arn(execution_arn)

        params: Dict[str, Any] = {"executionArn": execution_arn}
        if cause:
            params["cause"] = cause
        if error:
            params["error"] = error
        return await asyncio.to_thread(self.client.stop_execution, **params)

    async def list_executions(
        self,
        arn: str,
        status_filter: Optional[str] = None,
        max_results: Optional[int] = None,
        next_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        _validate_arn(arn)

        params: Dict[str, Any] = {"stateMachineArn": arn}
        if status_filter:
            params["statusFilter"] = status_filter
        if max_results:
            params["maxResults"] = max_results
        if next_token:
            params["nextToken"] = next_token
        return await asyncio.to_thread(self.client.list_executions, **params)
