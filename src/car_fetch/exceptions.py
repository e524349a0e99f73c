from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass
class CarFetchError(Exception):
    message: str
    code: str = "car_fetch_error"
    context: dict[str, Any] = field(default_factory=dict)

    def __init__(self, message: str, *, code: str | None = None, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.context = dict(context or {})

    def __str__(self) -> str:
        return self.message

    def as_log_fields(self) -> dict[str, Any]:
        return {
            "error_code": self.code,
            "error_message": self.message,
            "error_context": self.context,
        }


class ConfigValidationError(CarFetchError):
    code = "config_validation_error"


class DependencyMissingError(CarFetchError):
    code = "missing_dependency"

    def __init__(self, message: str, *, dependency: str, install: str | None = None) -> None:
        context = {"dependency": dependency}
        if install:
            context["install"] = install
        super().__init__(message, context=context)


class NetworkError(CarFetchError):
    """Request or transport failure after transport-level retries."""

    code = "network_error"


class SchemaError(CarFetchError):
    """An expected field is missing from a service response."""

    code = "schema_error"


class NoUrlPresent(SchemaError):
    code = "no_url_present"


class JobFailure(CarFetchError):
    """The remote job reported a terminal failure status."""

    code = "job_failure"


class PollTimeout(CarFetchError):
    code = "timeout"


class UnsupportedFilesystem(CarFetchError):
    code = "unsupported_filesystem"


class ContainerError(CarFetchError):
    code = "container_error"


class NoHeader(ContainerError):
    code = "no_header"


class TruncatedSection(ContainerError):
    code = "truncated_section"


class ContainerNotFound(CarFetchError):
    code = "container_not_found"


class ExtractionExhausted(CarFetchError):
    code = "extraction_exhausted"


class OutputError(CarFetchError):
    """The output directory or a file inside it cannot be written."""

    code = "output_error"
