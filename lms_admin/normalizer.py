"""
Response normalization for the LMS REST API.

Every resource operation ends in exactly one of three results:

  Ok(data)                      2xx with a well-formed body
  ValidationError(field_errors) 422 with an ``errors`` mapping
  Failure(message, code)        anything else; code 0 means the server was never reached
"""

from dataclasses import dataclass, field
from typing import Any, Union

NETWORK_FAILURE = 0
UNPROCESSABLE = 422

MALFORMED_MESSAGE = "Malformed response from server"


@dataclass(frozen=True)
class Ok:
    data: Any

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ValidationError:
    field_errors: dict[str, list[str]] = field(default_factory=dict)
    message: str = "The given data was invalid."

    @property
    def ok(self) -> bool:
        return False


@dataclass(frozen=True)
class Failure:
    message: str
    code: int

    @property
    def ok(self) -> bool:
        return False

    @property
    def is_network_failure(self) -> bool:
        return self.code == NETWORK_FAILURE


Result = Union[Ok, ValidationError, Failure]


def _field_errors(errors: Any) -> dict[str, list[str]] | None:
    """Coerce an ``errors`` body into field -> [messages], or None if unusable."""
    if not isinstance(errors, dict) or not errors:
        return None
    cleaned = {}
    for name, messages in errors.items():
        if isinstance(messages, str):
            messages = [messages]
        elif not isinstance(messages, (list, tuple)):
            messages = [str(messages)]
        cleaned[str(name)] = [str(m) for m in messages]
    return cleaned


def _message(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, str) and message:
            return message
    return fallback


def normalize(status: int, body: Any, reason: str = "", require_data: bool = True) -> Result:
    """Convert an HTTP status and decoded JSON body into a Result.

    ``body`` is None when the response could not be decoded as JSON. A success
    envelope without ``data`` is malformed unless ``require_data`` is False
    (delete acknowledgements), in which case the envelope itself is the data.
    """
    if 200 <= status < 300:
        if not isinstance(body, dict):
            return Failure(MALFORMED_MESSAGE, status)
        if body.get("success") is False:
            code = body.get("code")
            return Failure(
                _message(body, reason or "Request failed"),
                code if isinstance(code, int) else status,
            )
        if "data" in body:
            return Ok(body["data"])
        if require_data:
            return Failure(MALFORMED_MESSAGE, status)
        return Ok(body)

    if status == UNPROCESSABLE and isinstance(body, dict):
        errors = _field_errors(body.get("errors"))
        if errors is not None:
            return ValidationError(errors, _message(body, ValidationError.message))

    return Failure(_message(body, reason or f"Request failed with status {status}"), status)


def network_failure(exc: Exception) -> Failure:
    """Result for a request that never got a response."""
    detail = str(exc) or exc.__class__.__name__
    return Failure(f"Could not reach the LMS API: {detail}", NETWORK_FAILURE)


def as_dict(result: Result) -> dict[str, Any]:
    """Plain-dict form of a result for tool responses."""
    if isinstance(result, Ok):
        return {"status": "ok", "data": result.data}
    if isinstance(result, ValidationError):
        return {
            "status": "validation_error",
            "message": result.message,
            "errors": result.field_errors,
        }
    return {"status": "error", "message": result.message, "code": result.code}
