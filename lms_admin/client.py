"""
Authenticated, cached access to one LMS resource type.

Every operation resolves the bearer token first and raises Unauthenticated
before touching the network if there is none. Everything after that comes
back as a Result (Ok / ValidationError / Failure); listings are cached under
the resource's tag and mutations invalidate that tag once they succeed.
"""

import hashlib
from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from .attachments import Attachment
from .auth import SessionProvider, resolve_token
from .cache import TaggedCache
from .config import LmsConfig, get_config
from .normalizer import MALFORMED_MESSAGE, Failure, Ok, Result
from .request import LmsRequest, Unauthenticated
from .resources import MULTIPART, ResourceSpec

# Multipart updates are sent as POST with this override field
METHOD_OVERRIDE = "_method"


@dataclass(frozen=True)
class Page:
    """One page of a listing. pagination is passed through untouched."""
    records: list[dict]
    pagination: dict = field(default_factory=dict)
    total: int | None = None


class _ListFailed(Exception):
    """Carries a failed listing out of the cache loader so it isn't stored."""

    def __init__(self, result: Failure):
        super().__init__(result.message)
        self.result = result


def _fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()[:16]


def encode_multipart(payload: dict[str, Any]) -> tuple[list[tuple[str, str]], dict[str, Attachment]]:
    """Split a payload into form fields and file parts.

    Lists become repeated fields, booleans "1"/"0", None values are dropped.
    """
    fields: list[tuple[str, str]] = []
    files: dict[str, Attachment] = {}
    for key, value in payload.items():
        if value is None:
            continue
        if isinstance(value, Attachment):
            files[key] = value
        elif isinstance(value, (list, tuple)):
            fields.extend((key, _form_value(v)) for v in value)
        else:
            fields.append((key, _form_value(value)))
    return fields, files


def _record(result: Result) -> Result:
    """A single-record response must carry the record as a mapping under data."""
    if isinstance(result, Ok) and not isinstance(result.data, dict):
        return Failure(MALFORMED_MESSAGE, 200)
    return result


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


class ResourceClient:
    """list / get / create / update / delete for one ResourceSpec."""

    def __init__(
        self,
        spec: ResourceSpec,
        sessions: SessionProvider,
        cache: TaggedCache,
        config: LmsConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ):
        self.spec = spec
        self._sessions = sessions
        self._cache = cache
        self._config = config
        self._transport = transport
        self._timeout = timeout

    async def _token(self, operation: str) -> str:
        token = await resolve_token(self._sessions)
        if token is None:
            logger.warning("{} refused: not authenticated", operation)
            raise Unauthenticated(operation)
        return token

    def _request(self, operation: str, token: str) -> LmsRequest:
        return LmsRequest(
            operation,
            token,
            config=self._config or get_config(),
            transport=self._transport,
            timeout=self._timeout,
        )

    # --- Reads ---

    async def list(self, page: int = 1, **filters: Any) -> Result:
        """One page of records, served from cache until the list tag is invalidated."""
        operation = f"list-{self.spec.name}"
        query = self.spec.query(page, filters)
        token = await self._token(operation)

        async def load() -> Ok:
            result = await self._request(operation, token).get(self.spec.path).params(query).execute()
            if not isinstance(result, Ok):
                raise _ListFailed(
                    result if isinstance(result, Failure) else Failure(result.message, 422)
                )
            return Ok(self._page(result.data))

        key = (self.spec.name, _fingerprint(token), query)
        try:
            return await self._cache.cached_read(self.spec.tag, key, load)
        except _ListFailed as e:
            return e.result

    def _page(self, data: Any) -> Page:
        if not isinstance(data, dict) or not isinstance(data.get(self.spec.records_key), list):
            raise _ListFailed(Failure(MALFORMED_MESSAGE, 200))
        pagination = data.get("pagination")
        total = data.get(f"total_{self.spec.name}")
        return Page(
            records=data[self.spec.records_key],
            pagination=pagination if isinstance(pagination, dict) else {},
            total=total if isinstance(total, int) else None,
        )

    async def get(self, record_id: int | str) -> Result:
        """A single record. Never cached."""
        operation = f"get-{self.spec.label}"
        token = await self._token(operation)
        result = await self._request(operation, token).get(self.spec.item_path(record_id)).execute()
        return _record(result)

    # --- Mutations ---

    def _with_body(self, request: LmsRequest, payload: dict[str, Any], override: str | None = None) -> LmsRequest:
        if self.spec.encoding == MULTIPART:
            fields, files = encode_multipart(payload)
            if override:
                fields.append((METHOD_OVERRIDE, override))
            request.form_data(fields)
            for name, attachment in files.items():
                request.file(name, attachment.filename, attachment.content, attachment.content_type)
            return request
        for key, value in payload.items():
            if isinstance(value, Attachment):
                raise ValueError(f"{self.spec.name} does not accept file uploads ('{key}')")
        return request.json_body(payload)

    async def _mutate(self, operation: str, request: LmsRequest, returns_record: bool = True) -> Result:
        result = await request.execute()
        if returns_record:
            result = _record(result)
        if isinstance(result, Ok):
            self._cache.invalidate(self.spec.tag)
            logger.info("{} succeeded", operation)
        return result

    async def create(self, payload: dict[str, Any]) -> Result:
        operation = f"create-{self.spec.label}"
        token = await self._token(operation)
        request = self._with_body(self._request(operation, token).post(self.spec.path), payload)
        return await self._mutate(operation, request)

    async def update(self, record_id: int | str, payload: dict[str, Any]) -> Result:
        operation = f"update-{self.spec.label}"
        token = await self._token(operation)
        path = self.spec.item_path(record_id)
        if self.spec.encoding == MULTIPART:
            request = self._with_body(self._request(operation, token).post(path), payload, override="PATCH")
        else:
            request = self._with_body(self._request(operation, token).patch(path), payload)
        return await self._mutate(operation, request)

    async def delete(self, record_id: int | str) -> Result:
        operation = f"delete-{self.spec.label}"
        token = await self._token(operation)
        request = self._request(operation, token).delete(self.spec.item_path(record_id)).acknowledgement()
        return await self._mutate(operation, request, returns_record=False)


def build_clients(
    specs: dict[str, ResourceSpec],
    sessions: SessionProvider,
    cache: TaggedCache,
    config: LmsConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, ResourceClient]:
    """One client per resource, all sharing the same session source and cache."""
    return {
        name: ResourceClient(spec, sessions, cache, config=config, transport=transport)
        for name, spec in specs.items()
    }
