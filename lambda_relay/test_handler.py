"""Handler / dispatcher tests: envelope validation, lifecycle, workflow responses."""

from __future__ import annotations

import asyncio
import json
import unittest
import warnings
from pathlib import Path
from unittest.mock import patch

from pydantic import BaseModel

from lambda_relay import config
from lambda_relay import dispatcher as dispatcher_module
from lambda_relay.dispatcher import Dispatcher, DispatchState
from lambda_relay.errors import RelayError, TargetExecutionError, ValidationError
from lambda_relay.functions import FunctionWithPayload, FunctionWithSessionAndPayload, RemoteFunction
from lambda_relay.handler import Handler, ParallelHandler, RaiseErrorsStrategy, make_lambda_handler
from lambda_relay.lifecycle import LifecycleEmitter
from lambda_relay.session import InvocationEnvelope, InvocationSlot

STORED_KEY = "step-function-payloads/2026/10/19/STORED1234.json"


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class _MemoryStore:
    enabled = True

    def __init__(self):
        self.objects = {STORED_KEY: json.dumps({"name": "stored"}).encode("utf-8")}

    def put(self, key, data):
        self.objects[key] = data
        return key

    def get(self, key):
        return self.objects[key]


# ---------------------------------------------------------------------------
# Functions under test
# ---------------------------------------------------------------------------


class Echo(RemoteFunction):
    async def process(self):
        return {
            "organization": self.session.organization_code,
            "user": self.session.user_id,
            "data": self.data,
        }


class SessionEcho(FunctionWithSessionAndPayload, Echo):
    pass


class UserEcho(SessionEcho):
    requires_user = True


class CountingPayloadFunction(FunctionWithPayload):
    instances = 0

    def __init__(self):
        super().__init__()
        type(self).instances += 1

    async def process(self):
        return self.data


class Order(BaseModel):
    id: int
    note: str = ""


class OrderFunction(FunctionWithPayload):
    struct = Order

    async def process(self):
        return {"id": self.data.id, "note": self.data.note}


def _reject(data):
    raise ValueError("id is required")


class StrictFunction(FunctionWithPayload):
    struct = staticmethod(_reject)
    processed = False

    async def process(self):
        type(self).processed = True


class FailingProcess(RemoteFunction):
    async def process(self):
        raise RuntimeError("boom")


class FailingValidate(RemoteFunction):
    async def validate(self):
        raise LookupError("product not found")


class SyncProcess(RemoteFunction):
    def process(self):
        return "done"


class ReportStep(RemoteFunction):
    payload_fixed_properties = ("id",)

    async def process(self):
        return {"id": "report-1", "rows": "x" * 300_000}


class EnvelopeStep(RemoteFunction):
    async def process(self):
        return {"session": {"organizationCode": "globex"}, "body": {"next": 2}}


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class _HandlerTestCase(unittest.TestCase):
    handler_base = Handler

    def setUp(self):
        for name, value in (
            ("SERVICE_NAME", "example"),
            ("SERVICE_ENV", "test"),
            ("AWS_LAMBDA_FUNCTION_NAME", "ExampleService-test-Echo"),
        ):
            patcher = patch.object(config, name, value)
            patcher.start()
            self.addCleanup(patcher.stop)

        self.store = _MemoryStore()
        self.slot = InvocationSlot()
        self.emitter = LifecycleEmitter()
        self.ended = []
        self.emitter.on(config.ENDED_EVENT, self.ended.append)

        self.handler = type(
            "TestHandler",
            (self.handler_base,),
            {"blob_store": self.store, "slot": self.slot, "emitter": self.emitter},
        )

    def _handle(self, function_class, event=None):
        return _run(self.handler.handle(function_class, event))

    def assertValidationCode(self, function_class, event, code):
        with self.assertRaises(ValidationError) as ctx:
            self._handle(function_class, event)
        self.assertEqual(ctx.exception.code, RelayError.codes[code])


class ValidationTests(_HandlerTestCase):
    def test_missing_function(self):
        self.assertValidationCode(None, {}, "NO_FUNCTION")

    def test_invalid_function(self):
        self.assertValidationCode(dict, {}, "INVALID_FUNCTION")
        self.assertValidationCode("Echo", {}, "INVALID_FUNCTION")

    def test_session_must_be_an_object(self):
        self.assertValidationCode(Echo, {"session": "acme"}, "INVALID_SESSION")

    def test_session_required(self):
        self.assertValidationCode(SessionEcho, {"body": {"a": 1}}, "NO_SESSION")
        self.assertValidationCode(SessionEcho, {"session": {}, "body": {"a": 1}}, "NO_SESSION")

    def test_organization_must_be_a_string(self):
        self.assertValidationCode(SessionEcho, {"session": {"organizationCode": 5}, "body": {}}, "INVALID_ORGANIZATION")
        self.assertValidationCode(Echo, {"session": {"organizationCode": ["acme"]}}, "INVALID_ORGANIZATION")

    def test_session_is_checked_before_payload(self):
        self.assertValidationCode(SessionEcho, {}, "NO_SESSION")

    def test_user_required(self):
        self.assertValidationCode(UserEcho, {"session": {"organizationCode": "acme"}, "body": {"a": 1}}, "NO_USER")

    def test_user_must_be_a_string(self):
        self.assertValidationCode(Echo, {"session": {"organizationCode": "acme", "userId": 7}}, "INVALID_USER")

    def test_payload_required_before_function_is_built(self):
        CountingPayloadFunction.instances = 0

        self.assertValidationCode(CountingPayloadFunction, {}, "NO_PAYLOAD")
        self.assertEqual(CountingPayloadFunction.instances, 0)

    def test_task_token_must_be_a_string(self):
        self.assertValidationCode(Echo, {"taskToken": 5}, "INVALID_TASK_TOKEN")

    def test_workflow_context_must_be_an_object(self):
        self.assertValidationCode(Echo, {"workflowContext": "ctx"}, "INVALID_WORKFLOW_CONTEXT")

    def test_validation_failures_raise_under_default_strategy(self):
        with self.assertRaises(ValidationError):
            self._handle(SessionEcho, {"body": {"a": 1}})

    def test_struct_failure_is_invalid_payload(self):
        StrictFunction.processed = False

        self.assertValidationCode(StrictFunction, {"body": {"a": 1}}, "INVALID_PAYLOAD")
        self.assertFalse(StrictFunction.processed)

    def test_pydantic_struct_failure_is_invalid_payload(self):
        self.assertValidationCode(OrderFunction, {"body": {"id": "not-a-number"}}, "INVALID_PAYLOAD")


class ExecutionTests(_HandlerTestCase):
    def test_function_receives_session_and_data(self):
        result = self._handle(UserEcho, {
            "session": {"organizationCode": "acme", "userId": "u-1"},
            "body": {"a": 1},
        })

        self.assertEqual(result, {"organization": "acme", "user": "u-1", "data": {"a": 1}})

    def test_function_without_requirements_runs_on_empty_event(self):
        self.assertEqual(self._handle(Echo), {"organization": None, "user": None, "data": None})

    def test_pydantic_struct_coerces_payload(self):
        self.assertEqual(self._handle(OrderFunction, {"body": {"id": "5"}}), {"id": 5, "note": ""})

    def test_sync_process_is_supported(self):
        self.assertEqual(self._handle(SyncProcess, {}), "done")

    def test_process_error_is_formatted(self):
        self.assertEqual(self._handle(FailingProcess, {}), {"errorKind": "RuntimeError", "message": "boom"})

    def test_validate_error_is_formatted(self):
        self.assertEqual(
            self._handle(FailingValidate, {}),
            {"errorKind": "LookupError", "message": "product not found"},
        )

    def test_raise_strategy_propagates_process_error(self):
        self.handler.error_strategy = RaiseErrorsStrategy()

        with self.assertRaises(TargetExecutionError) as ctx:
            self._handle(FailingProcess, {})
        self.assertIsInstance(ctx.exception.original, RuntimeError)

    def test_offloaded_body_is_rehydrated(self):
        result = self._handle(Echo, {"body": {"contentS3Path": STORED_KEY}})

        self.assertEqual(result["data"], {"name": "stored"})

    def test_ended_is_emitted_on_success_and_failure(self):
        self._handle(Echo, {})
        self._handle(FailingProcess, {})
        with self.assertRaises(ValidationError):
            self._handle(SessionEcho, {})

        self.assertEqual(self.ended, [config.ENDED_EVENT] * 3)

    def test_failing_listener_does_not_break_invocation(self):
        def broken(_event):
            raise RuntimeError("listener down")

        self.emitter.on(config.ENDED_EVENT, broken)

        self.assertEqual(self._handle(SyncProcess, {}), "done")


class RecallSlotTests(_HandlerTestCase):
    def test_validated_invocation_is_recorded(self):
        event = {"session": {"organizationCode": "acme"}, "body": {"contentS3Path": STORED_KEY}}

        self._handle(Echo, event)

        self.assertEqual(self.slot.function_name, "ExampleService-test-Echo")
        self.assertEqual(self.slot.payload, event)

    def test_local_function_name_comes_from_class(self):
        config.SERVICE_ENV = "local"

        self._handle(Echo, {})

        self.assertEqual(self.slot.function_name, "ExampleService-local-Echo")
        self.assertIsNone(self.slot.payload)

    def test_rejected_invocation_is_not_recorded(self):
        with self.assertRaises(ValidationError):
            self._handle(SessionEcho, {})

        self.assertIsNone(self.slot.function_name)


class WorkflowResponseTests(_HandlerTestCase):
    def test_large_response_is_offloaded_with_fixed_properties(self):
        event = {
            "session": {"organizationCode": "acme"},
            "stateMachine": {"id": "sm-1", "name": "Reports"},
        }

        result = self._handle(ReportStep, event)

        self.assertEqual(result["session"], {"organizationCode": "acme"})
        self.assertEqual(result["stateMachine"], {"id": "sm-1", "name": "Reports"})
        self.assertEqual(set(result["body"]), {"contentS3Path", "id"})
        self.assertEqual(result["body"]["id"], "report-1")
        self.assertTrue(result["body"]["contentS3Path"].startswith("step-function-payloads/"))
        stored = json.loads(self.store.objects[result["body"]["contentS3Path"]])
        self.assertEqual(stored["rows"], "x" * 300_000)

    def test_missing_session_and_body_default_to_null(self):
        self.assertEqual(self._handle(RemoteFunction, {"workflowContext": {}}), {"session": None, "body": None})

    def test_envelope_shaped_result_supplies_session_and_body(self):
        result = self._handle(EnvelopeStep, {"session": {"organizationCode": "acme"}, "workflowContext": {}})

        self.assertEqual(result, {"session": {"organizationCode": "globex"}, "body": {"next": 2}})

    def test_plain_invocation_returns_result_unwrapped(self):
        self.assertEqual(self._handle(SyncProcess, {"session": {"organizationCode": "acme"}}), "done")


class ParallelHandlerTests(_HandlerTestCase):
    handler_base = ParallelHandler

    def test_branch_outputs_are_merged(self):
        event = [
            {"session": {"organizationCode": "acme"}, "body": {"a": 1}, "stateMachine": {"id": "sm-1"}},
            {"session": {"organizationCode": "other"}, "body": {"contentS3Path": STORED_KEY}},
            {"body": None},
        ]

        result = self._handle(Echo, event)

        self.assertEqual(result["session"], {"organizationCode": "acme"})
        self.assertEqual(result["stateMachine"], {"id": "sm-1"})
        self.assertEqual(result["body"]["organization"], "acme")
        self.assertEqual(result["body"]["data"], [{"a": 1}, {"name": "stored"}, None])

    def test_prepare_event_without_session(self):
        self.assertEqual(ParallelHandler.prepare_event([{"body": 1}, {"body": 2}]), {"body": [1, 2]})


class DispatcherStateTests(unittest.TestCase):
    def test_successful_run_completes(self):
        dispatcher = Dispatcher(SyncProcess, InvocationEnvelope())

        self.assertEqual(_run(dispatcher.run()), "done")
        self.assertEqual(dispatcher.state, DispatchState.COMPLETED)

    def test_failed_run_ends_in_failed(self):
        dispatcher = Dispatcher(FailingProcess, InvocationEnvelope())

        with self.assertRaises(TargetExecutionError):
            _run(dispatcher.run())
        self.assertEqual(dispatcher.state, DispatchState.FAILED)

    def test_validate_moves_to_validated(self):
        dispatcher = Dispatcher(Echo, InvocationEnvelope(session={"organizationCode": "acme"}))

        dispatcher.validate()

        self.assertEqual(dispatcher.state, DispatchState.VALIDATED)


def test_make_lambda_handler_runs_synchronously():
    lambda_handler = make_lambda_handler(SyncProcess)

    with patch.object(config, "SERVICE_ENV", "test"), patch.object(config, "AWS_LAMBDA_FUNCTION_NAME", "Sync"):
        assert lambda_handler({}, None) == "done"
    assert lambda_handler.__name__ == "SyncProcess_handler"


def test_dispatcher_module_compiles_without_warnings():
    source = Path(dispatcher_module.__file__).read_text(encoding="utf-8")

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        compile(source, dispatcher_module.__file__, "exec")
