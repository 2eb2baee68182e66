"""naming.py — Function name formatting for same-service and cross-service calls."""
from __future__ import annotations

from typing import Optional

from lambda_relay import config
from lambda_relay.errors import NotFoundError, RelayError


def dash_case_to_title_case(value: str) -> str:
    """``fake-lambda`` and ``fakeLambda`` both become ``FakeLambda``."""
    parts = [part for part in str(value).split("-") if part]
    return "".join(part[0].upper() + part[1:] for part in parts)


def _service_title(service_name: str) -> str:
    return dash_case_to_title_case(f"{service_name}-service")


def _require_service_name() -> str:
    if not config.SERVICE_NAME:
        raise NotFoundError("No Service Name is found", RelayError.codes["NO_SERVICE"])
    return config.SERVICE_NAME


def get_function_name(function_name: str) -> str:
    """Deployed name of a function owned by this service: ``<Service>-<env>-<Function>``."""
    service_title = _service_title(_require_service_name())
    return f"{service_title}-{config.SERVICE_ENV}-{dash_case_to_title_case(function_name)}"


def get_api_function_name(function_name: str, account_id: str, service_code: str) -> str:
    """Address of an API function owned by another organization's account."""
    formatted = f"API-{_service_title(service_code)}-{dash_case_to_title_case(function_name)}-{config.SERVICE_ENV}"
    return f"{account_id}:function:{formatted}"


def get_current_function_name(function_class: Optional[type] = None) -> Optional[str]:
    """Name of the function executing now; derived from its class when running locally."""
    if config.is_local_env() and function_class is not None:
        return get_function_name(function_class.__name__)
    return config.AWS_LAMBDA_FUNCTION_NAME or None
