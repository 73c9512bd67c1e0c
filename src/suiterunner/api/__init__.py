"""API (REST/SOAP) request execution."""

from suiterunner.api.executor import (
    ApiExecutor,
    RequestLoadError,
    is_soap_request,
    resolve_base_url,
)

__all__ = [
    "ApiExecutor",
    "RequestLoadError",
    "is_soap_request",
    "resolve_base_url",
]
