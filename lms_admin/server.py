"""
LMS Admin MCP Server -- Exposes course and group administration as MCP tools.

Run with:
    fastmcp run lms_admin/server.py:mcp
    python -m lms_admin.server
    lms-admin  (MCP_TRANSPORT=streamable-http for HTTP mode)
"""

import os
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from loguru import logger

from lms_admin import resources
from lms_admin.auth import StoredSessionProvider, current_session, login as _login, setup_session as _setup_session
from lms_admin.cache import TaggedCache
from lms_admin.cleaners import clean_page, clean_record
from lms_admin.client import Page, ResourceClient, build_clients
from lms_admin.config import get_config, reload_config as _reload_config
from lms_admin.forms import FormController, course_form, group_form
from lms_admin.normalizer import Ok, Result, ValidationError, as_dict
from lms_admin.request import LmsAPIError, Unauthenticated

_cache = TaggedCache()
_sessions = StoredSessionProvider()
_clients: dict[str, ResourceClient] | None = None


def clients() -> dict[str, ResourceClient]:
    """Resource clients for every resource, sharing one session source and cache."""
    global _clients
    if _clients is None:
        _clients = build_clients(resources.ALL, _sessions, _cache)
    return _clients


def reset_clients() -> None:
    """Forget clients and cached listings (after a config reload or logout)."""
    global _clients
    _clients = None
    _cache.clear()


@asynccontextmanager
async def lifespan(server):
    """Log in on startup if credentials are configured and no token is stored."""
    try:
        session = await current_session(_sessions)
        if session is None or not session.access_token:
            result = await _setup_session(_sessions)
            logger.info("Session ready, expires {}", result.get("expires", "unknown"))
        else:
            logger.info("Using stored session for {}", session.email)
    except (ValueError, LmsAPIError) as e:
        logger.warning("Session setup skipped: {}", e)
        logger.warning("Call the 'login' tool with your email and password.")
    yield {}


mcp = FastMCP(
    name="LMS Admin",
    lifespan=lifespan,
    instructions=(
        "Administration tools for the LMS REST API. "
        "Provides listing, viewing, creating, updating and deleting of courses "
        "and groups, plus the lookup lists (divisions, districts, branches, "
        "batches, categories) needed to fill in their fields. "
        "Call login first if no session is active."
    ),
)


def _handle_error(e: Exception) -> None:
    """Convert client errors into MCP ToolErrors."""
    if isinstance(e, Unauthenticated):
        raise ToolError(f"NOT AUTHENTICATED: {'; '.join(e.messages)}\n\n{e.help_text}")
    if isinstance(e, LmsAPIError):
        raise ToolError(f"LMS API error: {'; '.join(e.messages)}")
    if isinstance(e, ValueError):
        raise ToolError(f"Invalid input: {e}")
    raise ToolError(f"Request failed: {e}")


# ==================== Shared helpers ====================


async def list_records(resource: str, page: int = 1, **filters: Any) -> dict:
    """Cleaned page of records, or an error dict."""
    result = await clients()[resource].list(page, **filters)
    if isinstance(result, Ok):
        listing: Page = result.data
        return {"status": "ok", **clean_page(resource, listing.records, listing.pagination, listing.total)}
    return as_dict(result)


async def get_record(resource: str, record_id: int) -> dict:
    result = await clients()[resource].get(record_id)
    if isinstance(result, Ok):
        return {"status": "ok", resources.ALL[resource].label: clean_record(resource, result.data)}
    return as_dict(result)


async def delete_record(resource: str, record_id: int) -> dict:
    result = await clients()[resource].delete(record_id)
    if isinstance(result, Ok):
        return {"status": "ok", "message": f"{resources.ALL[resource].label.capitalize()} {record_id} deleted"}
    return as_dict(result)


def form_response(form: FormController, result: Result) -> dict:
    """What the form shows after a submit."""
    resource = form.client.spec.name
    if isinstance(result, Ok):
        record = result.data if isinstance(result.data, dict) else {}
        return {"status": "ok", form.client.spec.label: clean_record(resource, record)}
    if isinstance(result, ValidationError):
        response = {"status": "validation_error", "errors": dict(form.errors)}
        if form.form_error:
            response["message"] = form.form_error
        return response
    return {"status": "error", "message": form.form_error, "code": getattr(result, "code", None)}


async def submit_form(make_form, resource: str, values: dict, record_id: int | None = None) -> dict:
    """Fill in a new (or loaded) form with values and submit it."""
    client = clients()[resource]
    record = None
    if record_id is not None:
        current = await client.get(record_id)
        if not isinstance(current, Ok):
            return as_dict(current)
        record = current.data
    form = make_form(client, record)
    provided = {k: v for k, v in values.items() if v is not None}
    result = await form.submit(provided)
    return form_response(form, result)


# ==================== Auth Tools ====================


@mcp.tool(
    description=(
        "Log in to the LMS with email and password. "
        "Stores the access token for all other tools. "
        "Returns the user's name, email, roles and permissions."
    ),
    tags={"auth"},
)
async def login(email: str, password: str) -> dict:
    """Log in and store the session."""
    try:
        session = await _login(email, password)
    except Exception as e:
        _handle_error(e)
    if session is None:
        return {"status": "error", "message": "Invalid email or password"}
    _sessions.save(session)
    reset_clients()
    return {"status": "ok", "user": session.profile()}


@mcp.tool(
    description="Show who is logged in and when the access token expires.",
    tags={"auth"},
)
async def session_status() -> dict:
    """Report the current session without exposing the token."""
    session = await current_session(_sessions)
    if session is None:
        return {"status": "logged_out"}
    return {
        "status": "authenticated" if session.access_token else "expired",
        "user": session.profile(),
    }


@mcp.tool(
    description="Log out: forget the stored session and all cached listings.",
    tags={"auth"},
)
async def logout() -> dict:
    """Drop the stored session."""
    _sessions.clear()
    reset_clients()
    return {"status": "logged_out"}


@mcp.tool(
    description=(
        "Reload settings (API URL, timeout, credentials) from config.json or "
        "environment variables without restarting the server."
    ),
    tags={"auth"},
)
async def reload_settings() -> dict:
    """Reload configuration and drop cached clients."""
    try:
        cfg = _reload_config()
    except ValueError as e:
        return {"status": "error", "message": f"Config error: {e}"}
    reset_clients()
    return {"status": "ok", "apiUrl": cfg.api_base, "timeout": cfg.timeout}


# ==================== Course Tools ====================


@mcp.tool(
    description=(
        "List courses, one page at a time. Optional filters: search, sort_order, "
        "level, division_id, branch_id, category_id. Empty filters are ignored. "
        "Returns course summaries and pagination."
    ),
    tags={"courses"},
)
async def list_courses(
    page: int = 1,
    search: str | None = None,
    sort_order: str | None = None,
    level: str | None = None,
    division_id: int | None = None,
    branch_id: int | None = None,
    category_id: int | None = None,
) -> dict:
    """List courses."""
    try:
        return await list_records(
            "courses", page,
            search=search, sort_order=sort_order, level=level,
            division_id=division_id, branch_id=branch_id, category_id=category_id,
        )
    except Exception as e:
        _handle_error(e)


@mcp.tool(description="Get one course by id.", tags={"courses"})
async def get_course(course_id: int) -> dict:
    """Get a course by id."""
    try:
        return await get_record("courses", course_id)
    except Exception as e:
        _handle_error(e)


@mcp.tool(
    description=(
        "Create a course. title and lm_category_id are required. "
        "featured_image_path is an absolute path to a local image file. "
        "status is '0', '1' or '2'. Field-level validation errors are returned "
        "under 'errors'."
    ),
    tags={"courses"},
)
async def create_course(
    title: str,
    lm_category_id: int,
    sub_title: str | None = None,
    slug: str | None = None,
    short_description: str | None = None,
    description: str | None = None,
    featured_image_path: str | None = None,
    video_link: str | None = None,
    level: str | None = None,
    end_date: str | None = None,
    status: str | None = None,
    is_default: bool | None = None,
    branch_ids: list[int] | None = None,
    price: float | None = None,
    discount: float | None = None,
) -> dict:
    """Submit the course add form."""
    values = dict(locals())
    values["featured_image"] = values.pop("featured_image_path")
    try:
        return await submit_form(course_form, "courses", values)
    except Exception as e:
        _handle_error(e)


@mcp.tool(
    description=(
        "Update a course. Only the fields you pass are changed; the rest keep "
        "their current values. Field-level validation errors are returned under 'errors'."
    ),
    tags={"courses"},
)
async def update_course(
    course_id: int,
    title: str | None = None,
    lm_category_id: int | None = None,
    sub_title: str | None = None,
    slug: str | None = None,
    short_description: str | None = None,
    description: str | None = None,
    featured_image_path: str | None = None,
    video_link: str | None = None,
    level: str | None = None,
    end_date: str | None = None,
    status: str | None = None,
    is_default: bool | None = None,
    branch_ids: list[int] | None = None,
    price: float | None = None,
    discount: float | None = None,
) -> dict:
    """Submit the course edit form."""
    values = dict(locals())
    values.pop("course_id")
    values["featured_image"] = values.pop("featured_image_path")
    try:
        return await submit_form(course_form, "courses", values, record_id=course_id)
    except Exception as e:
        _handle_error(e)


@mcp.tool(
    description="Delete a course by id. This cannot be undone.",
    tags={"courses"},
)
async def delete_course(course_id: int) -> dict:
    """Delete a course."""
    try:
        return await delete_record("courses", course_id)
    except Exception as e:
        _handle_error(e)


# ==================== Group Tools ====================


@mcp.tool(
    description=(
        "List groups, one page at a time. Optional filters: search, division_id, "
        "district_id, branch_id, lm_course_id, lm_batch_id, is_active. "
        "Returns group summaries, total count and pagination."
    ),
    tags={"groups"},
)
async def list_groups(
    page: int = 1,
    search: str | None = None,
    division_id: int | None = None,
    district_id: int | None = None,
    branch_id: int | None = None,
    lm_course_id: int | None = None,
    lm_batch_id: int | None = None,
    is_active: bool | None = None,
) -> dict:
    """List groups."""
    try:
        return await list_records(
            "groups", page,
            search=search, division_id=division_id, district_id=district_id,
            branch_id=branch_id, lm_course_id=lm_course_id, lm_batch_id=lm_batch_id,
            is_active=is_active,
        )
    except Exception as e:
        _handle_error(e)


@mcp.tool(description="Get one group by id.", tags={"groups"})
async def get_group(group_id: int) -> dict:
    """Get a group by id."""
    try:
        return await get_record("groups", group_id)
    except Exception as e:
        _handle_error(e)


@mcp.tool(
    description=(
        "Create a group. group_name is required. Use list_lookup to find ids for "
        "division, district, branch, course (list_courses) and batch. "
        "Field-level validation errors are returned under 'errors'."
    ),
    tags={"groups"},
)
async def create_group(
    group_name: str,
    division_id: int | None = None,
    district_id: int | None = None,
    branch_id: int | None = None,
    lm_course_id: int | None = None,
    lm_batch_id: int | None = None,
    is_active: bool | None = None,
) -> dict:
    """Submit the group add form."""
    try:
        return await submit_form(group_form, "groups", dict(locals()))
    except Exception as e:
        _handle_error(e)


@mcp.tool(
    description=(
        "Update a group. Only the fields you pass are changed. "
        "Field-level validation errors are returned under 'errors'."
    ),
    tags={"groups"},
)
async def update_group(
    group_id: int,
    group_name: str | None = None,
    division_id: int | None = None,
    district_id: int | None = None,
    branch_id: int | None = None,
    lm_course_id: int | None = None,
    lm_batch_id: int | None = None,
    is_active: bool | None = None,
) -> dict:
    """Submit the group edit form."""
    values = dict(locals())
    values.pop("group_id")
    try:
        return await submit_form(group_form, "groups", values, record_id=group_id)
    except Exception as e:
        _handle_error(e)


@mcp.tool(
    description="Delete a group by id. This cannot be undone.",
    tags={"groups"},
)
async def delete_group(group_id: int) -> dict:
    """Delete a group."""
    try:
        return await delete_record("groups", group_id)
    except Exception as e:
        _handle_error(e)


# ==================== Lookup Tools ====================


@mcp.tool(
    description=(
        "List a lookup resource used to fill in course and group fields: "
        "divisions, districts (filter: division_id), branches (filter: district_id), "
        "batches (filter: lm_course_id) or categories. Returns ids and names."
    ),
    tags={"lookups"},
)
async def list_lookup(resource: str, page: int = 1, filters: dict[str, Any] | None = None) -> dict:
    """List divisions, districts, branches, batches or categories."""
    if resource not in resources.LOOKUPS:
        raise ToolError(
            f"Unknown lookup '{resource}'. Choose one of: {', '.join(resources.LOOKUPS)}"
        )
    try:
        return await list_records(resource, page, **(filters or {}))
    except Exception as e:
        _handle_error(e)


# ==================== Entry Point ====================


def main():
    """Run the MCP server. Set MCP_TRANSPORT=streamable-http for HTTP mode."""
    get_config()
    transport = os.environ.get("MCP_TRANSPORT", "stdio")
    host = os.environ.get("MCP_HOST", "127.0.0.1")
    if transport == "stdio":
        mcp.run(transport=transport)
    else:
        mcp.run(transport=transport, host=host)


if __name__ == "__main__":
    main()
