"""
Builder-pattern HTTP client for the LMS REST API.
Applies the bearer token and normalizes every response into a Result.
"""

from typing import Any, Optional

import httpx
from loguru import logger

from .config import LmsConfig, get_config
from .normalizer import Failure, Result, network_failure, normalize


class LmsAPIError(Exception):
    """Raised when an LMS operation cannot produce a Result."""

    def __init__(self, operation: str, messages: list[str]):
        self.operation = operation
        self.messages = messages
        super().__init__(f"LMS API error in '{operation}': {'; '.join(messages)}")


class Unauthenticated(LmsAPIError):
    """Raised before any network call when no valid access token is available.

    Tokens expire and are never refreshed silently; the caller has to log in again.
    """

    def __init__(self, operation: str, messages: list[str] | None = None):
        super().__init__(operation, messages or ["No valid session or access token found."])
        self.help_text = (
            "You are not logged in, or your access token has expired.\n\n"
            "To get a fresh token:\n"
            "  1. Call the login tool with your email and password\n"
            "     (or set LMS_EMAIL / LMS_PASSWORD and restart the server)\n"
            "  2. Retry the operation\n"
        )


class LmsRequest:
    """
    Builder for LMS API requests. The bearer token is applied to every request
    and responses always come back as a normalized Result.

    Usage:
        result = await (
            LmsRequest("list-courses", token)
            .get("/courses")
            .params({"page": 1, "level": "beginner"})
            .execute()
        )
    """

    def __init__(
        self,
        operation_name: str,
        token: str,
        config: LmsConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ):
        cfg = config or get_config()
        self._operation_name = operation_name
        self._token = token
        self._api_base = cfg.api_base
        self._timeout = timeout if timeout is not None else cfg.timeout
        self._transport = transport
        self._method = "GET"
        self._path: Optional[str] = None
        self._params: list[tuple[str, str]] = []
        self._json_body: Any = None
        self._form_data: list[tuple[str, str]] | None = None
        self._files: list[tuple[str, tuple[str, bytes, str]]] = []
        self._extra_headers: dict[str, str] = {}
        self._require_data = True

    # --- Builder methods ---

    def _route(self, method: str, path: str) -> "LmsRequest":
        self._method = method
        self._path = path if path.startswith("/") else f"/{path}"
        return self

    def get(self, path: str) -> "LmsRequest":
        return self._route("GET", path)

    def post(self, path: str) -> "LmsRequest":
        return self._route("POST", path)

    def patch(self, path: str) -> "LmsRequest":
        return self._route("PATCH", path)

    def delete(self, path: str) -> "LmsRequest":
        return self._route("DELETE", path)

    def params(self, params: dict[str, Any] | list[tuple[str, Any]]) -> "LmsRequest":
        """Set query parameters. Values are sent as given; filter them beforehand."""
        items = params.items() if isinstance(params, dict) else params
        self._params = [(k, str(v)) for k, v in items]
        return self

    def json_body(self, body: Any) -> "LmsRequest":
        """Set JSON body (application/json)."""
        self._json_body = body
        return self

    def form_data(self, data: list[tuple[str, str]]) -> "LmsRequest":
        """Set multipart/form-data fields. Repeated keys (e.g. ids[]) are allowed."""
        self._form_data = list(data)
        return self

    def file(self, name: str, filename: str, content: bytes, content_type: str) -> "LmsRequest":
        """Attach a file part to a multipart request."""
        self._files.append((name, (filename, content, content_type)))
        return self

    def header(self, name: str, value: str) -> "LmsRequest":
        self._extra_headers[name] = value
        return self

    def acknowledgement(self) -> "LmsRequest":
        """Accept a success envelope without ``data`` (e.g. a delete)."""
        self._require_data = False
        return self

    # --- Execution ---

    def _build_headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {self._token}",
        }
        headers.update(self._extra_headers)
        return headers

    def _request_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"headers": self._build_headers()}
        if self._params:
            kwargs["params"] = self._params
        if self._form_data is not None or self._files:
            fields = self._form_data or []
            # (None, value) tuples tell httpx to send multipart form fields (not files)
            parts = [(k, (None, v)) for k, v in fields]
            parts.extend(self._files)
            kwargs["files"] = parts
        elif self._json_body is not None:
            kwargs["json"] = self._json_body
        return kwargs

    async def execute(self) -> Result:
        """Send the request. Never raises for HTTP or network failures."""
        if not self._path:
            raise ValueError(f"No path set for operation '{self._operation_name}'")

        url = f"{self._api_base}{self._path}"
        logger.debug("{} {} {} ({})", self._operation_name, self._method, url, self._params)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.request(self._method, url, **self._request_kwargs())
        except httpx.HTTPError as e:
            logger.error("{} failed before a response arrived: {}", self._operation_name, e)
            return network_failure(e)

        try:
            body = resp.json()
        except ValueError:
            body = None

        result = normalize(resp.status_code, body, resp.reason_phrase, require_data=self._require_data)
        if isinstance(result, Failure):
            logger.warning(
                "{} returned {}: {}", self._operation_name, result.code, result.message
            )
        return result
