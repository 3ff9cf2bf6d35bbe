"""
Session handling and credential resolution for the LMS admin client.

Flow:
  1. login() posts {email, password} to {api_base}/login
  2. The response's access_token/expires_at plus the user profile become a Session
  3. The Session is kept by a SessionProvider (in memory, or under the
     "session" key of config.json)
  4. Before every outbound request, resolve_token() reads the provider again and
     returns the bearer token, or None once it has expired

Nothing caches the resolved token: the session may be replaced or expire at any
time, so each request asks for it afresh.
"""

import inspect
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Protocol, Union

import httpx
from loguru import logger

from .config import LmsConfig, get_config, read_config_data, write_config_data
from .request import LmsAPIError


@dataclass(frozen=True)
class Session:
    """The caller's credential and profile, as returned at login."""
    access_token: str | None
    expires_at: datetime | None = None
    id: str | None = None
    name: str | None = None
    email: str | None = None
    roles: list = field(default_factory=list)
    permissions: list = field(default_factory=list)

    @classmethod
    def from_login_response(cls, data: dict) -> "Session":
        user = data.get("user") or {}
        permissions = data.get("permissions")
        return cls(
            access_token=data.get("access_token"),
            expires_at=parse_timestamp(data.get("expires_at")),
            id=str(user["id"]) if user.get("id") is not None else None,
            name=user.get("name"),
            email=user.get("email"),
            roles=list(data.get("roles") or []),
            permissions=permissions if isinstance(permissions, list) else [],
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        """A token expiring exactly at ``now`` is already expired."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or _utcnow())

    def refreshed(self, now: datetime | None = None) -> "Session":
        """Copy with the access token dropped if it has expired. Profile is kept."""
        if self.access_token and self.is_expired(now):
            logger.warning("Access token expired at {}", self.expires_at.isoformat())
            return replace(self, access_token=None)
        return self

    def to_dict(self) -> dict:
        return {
            "accessToken": self.access_token,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "roles": self.roles,
            "permissions": self.permissions,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        return cls(
            access_token=data.get("accessToken"),
            expires_at=parse_timestamp(data.get("expiresAt")),
            id=data.get("id"),
            name=data.get("name"),
            email=data.get("email"),
            roles=list(data.get("roles") or []),
            permissions=list(data.get("permissions") or []),
        )

    def profile(self) -> dict:
        """Profile fields only; never includes the token."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "roles": self.roles,
            "permissions": self.permissions,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch seconds into an aware datetime (UTC if naive)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Unrecognized timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ==================== Session providers ====================


class SessionProvider(Protocol):
    """Source of the current Session. get_session may be sync or async."""

    def get_session(self) -> Union[Session, None, Awaitable[Session | None]]:
        ...


class MemorySessionProvider:
    """Holds a Session in process memory."""

    def __init__(self, session: Session | None = None):
        self._session = session

    def get_session(self) -> Session | None:
        if self._session is None:
            return None
        self._session = self._session.refreshed()
        return self._session

    def save(self, session: Session | None) -> None:
        self._session = session

    def clear(self) -> None:
        self._session = None


class StoredSessionProvider:
    """Keeps the Session under the "session" key of config.json."""

    def get_session(self) -> Session | None:
        data = read_config_data().get("session")
        if not data or not isinstance(data, dict):
            return None
        session = Session.from_dict(data)
        current = session.refreshed()
        if current is not session:
            self.save(current)
        return current

    def save(self, session: Session | None) -> None:
        data = read_config_data()
        if session is None:
            data.pop("session", None)
        else:
            data["session"] = session.to_dict()
        write_config_data(data)

    def clear(self) -> None:
        self.save(None)


# ==================== Credential resolution ====================


async def current_session(provider: SessionProvider) -> Session | None:
    session = provider.get_session()
    if inspect.isawaitable(session):
        session = await session
    return session


async def resolve_token(provider: SessionProvider, now: datetime | None = None) -> str | None:
    """Bearer token for the next request, or None if there is no usable one."""
    session = await current_session(provider)
    if session is None or not session.access_token:
        return None
    if session.is_expired(now):
        logger.warning("Refusing to use expired access token")
        return None
    return session.access_token


# ==================== Login ====================


async def login(
    email: str | None,
    password: str | None,
    config: LmsConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Session | None:
    """
    Exchange email/password for a Session.

    Returns None for missing or rejected credentials. Raises LmsAPIError if the
    server could not be reached or answered with something other than a
    credential verdict.
    """
    if not email or not password:
        return None

    cfg = config or get_config()
    try:
        async with httpx.AsyncClient(timeout=cfg.timeout, transport=transport) as client:
            resp = await client.post(
                f"{cfg.api_base}/login",
                headers={"Accept": "application/json"},
                json={"email": email, "password": password},
            )
    except httpx.HTTPError as e:
        logger.error("Login request failed: {}", e)
        raise LmsAPIError("login", [f"Could not reach the LMS API: {e}"]) from e

    if resp.status_code in (401, 403, 422):
        logger.info("Login rejected for {}", email)
        return None
    if resp.status_code >= 400:
        raise LmsAPIError("login", [f"HTTP {resp.status_code} {resp.reason_phrase}"])

    try:
        data = resp.json()
    except ValueError:
        raise LmsAPIError("login", ["Malformed response from server"])

    # Some deployments wrap the payload in the usual {success, data} envelope
    if isinstance(data, dict) and isinstance(data.get("data"), dict) and "user" not in data:
        data = data["data"]

    if not isinstance(data, dict) or not data.get("user") or not data.get("access_token"):
        logger.info("Login returned no user or token for {}", email)
        return None

    session = Session.from_login_response(data)
    logger.debug("Logged in as {} (expires {})", session.email, session.expires_at)
    return session


async def setup_session(
    provider: MemorySessionProvider | StoredSessionProvider,
    config: LmsConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict:
    """
    Log in with the configured credentials and store the Session in provider.
    """
    cfg = config or get_config()
    if not cfg.email or not cfg.password:
        raise ValueError(
            "No credentials configured. Set LMS_EMAIL / LMS_PASSWORD "
            "or 'email' / 'password' in config.json"
        )

    session = await login(cfg.email, cfg.password, config=cfg, transport=transport)
    if session is None:
        raise LmsAPIError("login", ["Invalid email or password"])

    provider.save(session)
    expires = session.expires_at.isoformat() if session.expires_at else "never"
    return {
        "status": "session_created",
        "expires": expires,
        "user": session.profile(),
        "message": f"Logged in as {session.email}, token expires {expires}.",
    }
