"""Resource clients: auth short-circuit, filtered cached listings, mutations and invalidation."""

from datetime import datetime, timezone

import httpx
import pytest

from conftest import listing
from lms_admin.attachments import Attachment
from lms_admin.auth import MemorySessionProvider, Session
from lms_admin.client import Page, ResourceClient, encode_multipart
from lms_admin.normalizer import MALFORMED_MESSAGE, NETWORK_FAILURE, Failure, Ok, ValidationError
from lms_admin.request import Unauthenticated
from lms_admin.resources import COURSES

COURSE = {"id": 5, "title": "Algebra", "level": "beginner"}


def _ok(data):
    return {"success": True, "message": "ok", "data": data}


class TestUnauthenticated:

    @pytest.fixture
    def anonymous(self, api, cache, config):
        return ResourceClient(COURSES, MemorySessionProvider(), cache, config=config, transport=api.transport())

    @pytest.mark.parametrize("call", [
        lambda c: c.list(),
        lambda c: c.list(2, search="math"),
        lambda c: c.get(5),
        lambda c: c.create({"title": "Algebra"}),
        lambda c: c.update(5, {"title": "Algebra"}),
        lambda c: c.delete(5),
    ])
    async def test_every_operation_fails_before_transport(self, anonymous, api, call):
        with pytest.raises(Unauthenticated):
            await call(anonymous)
        assert api.calls == 0

    async def test_expired_token_is_never_sent(self, api, cache, config):
        expired = MemorySessionProvider(Session(access_token="old", expires_at=datetime(2000, 1, 1, tzinfo=timezone.utc)))
        client = ResourceClient(COURSES, expired, cache, config=config, transport=api.transport())

        with pytest.raises(Unauthenticated):
            await client.list()
        assert api.calls == 0


class TestList:

    async def test_returns_page(self, courses, api):
        api.add("GET", "/courses", json=listing("courses", [COURSE]))

        result = await courses.list()

        assert isinstance(result, Ok)
        assert isinstance(result.data, Page)
        assert result.data.records == [COURSE]
        assert result.data.pagination["last_page"] == 3

    async def test_sends_bearer_token(self, courses, api):
        api.add("GET", "/courses", json=listing("courses", []))
        await courses.list()
        assert api.last.headers["Authorization"] == "Bearer secret-token"
        assert api.last.headers["Accept"] == "application/json"

    async def test_empty_filters_are_omitted(self, courses, api):
        api.add("GET", "/courses", json=listing("courses", []))

        await courses.list(search="", level=None, division_id="3")

        assert dict(api.last.url.params) == {"page": "1", "division_id": "3"}

    async def test_unknown_filter_is_rejected(self, courses, api):
        with pytest.raises(ValueError, match="Unknown filter"):
            await courses.list(colour="blue")
        assert api.calls == 0

    async def test_bad_page(self, courses):
        with pytest.raises(ValueError):
            await courses.list(0)

    async def test_repeated_list_is_cached(self, courses, api):
        api.add("GET", "/courses", json=listing("courses", [COURSE]))

        first = await courses.list(1, level="beginner")
        second = await courses.list(1, level="beginner")

        assert first == second
        assert api.calls == 1

    async def test_different_parameters_are_fetched(self, courses, api):
        api.add("GET", "/courses", json=listing("courses", [COURSE]))

        await courses.list(1)
        await courses.list(2)
        await courses.list(1, level="advanced")

        assert api.calls == 3

    async def test_failure_is_not_cached(self, courses, api):
        api.add("GET", "/courses", 500, {"message": "Database unavailable"})
        api.add("GET", "/courses", json=listing("courses", [COURSE]))

        failed = await courses.list()
        recovered = await courses.list()

        assert failed == Failure("Database unavailable", 500)
        assert isinstance(recovered, Ok)
        assert api.calls == 2

    async def test_network_failure(self, courses, api):
        api.fail("GET", "/courses")

        result = await courses.list()

        assert isinstance(result, Failure)
        assert result.code == NETWORK_FAILURE

    async def test_malformed_listing(self, courses, api):
        api.add("GET", "/courses", json=_ok({"items": []}))
        assert await courses.list() == Failure(MALFORMED_MESSAGE, 200)

    async def test_group_total_and_boolean_filter(self, groups, api):
        api.add("GET", "/groups", json=listing("groups", [{"id": 1}], total_groups=41))

        result = await groups.list(is_active=True, lm_course_id=4)

        assert result.data.total == 41
        assert dict(api.last.url.params) == {"page": "1", "is_active": "1", "lm_course_id": "4"}


class TestGet:

    async def test_found(self, courses, api):
        api.add("GET", "/courses/5", json=_ok(COURSE))
        assert await courses.get(5) == Ok(COURSE)

    async def test_not_cached(self, courses, api):
        api.add("GET", "/courses/5", json=_ok(COURSE))
        await courses.get(5)
        await courses.get(5)
        assert api.calls == 2

    async def test_not_found(self, courses, api):
        result = await courses.get(99)
        assert result == Failure("Not found", 404)

    async def test_success_without_record_is_malformed(self, courses, api):
        api.add("GET", "/courses/5", json={"success": True, "message": "ok"})
        assert await courses.get(5) == Failure(MALFORMED_MESSAGE, 200)


class TestMutations:

    async def test_create_invalidates_list(self, courses, api):
        api.add("GET", "/courses", json=listing("courses", []))
        api.add("GET", "/courses", json=listing("courses", [COURSE]))
        api.add("POST", "/courses", 201, _ok(COURSE))

        before = await courses.list(1, level="beginner")
        created = await courses.create({"title": "Algebra", "lm_category_id": 2})
        after = await courses.list(1, level="beginner")

        assert created == Ok(COURSE)
        assert before.data.records == []
        assert after.data.records == [COURSE]
        assert [r.method for r in api.requests] == ["GET", "POST", "GET"]

    async def test_create_validation_error(self, courses, api, cache):
        api.add("GET", "/courses", json=listing("courses", []))
        api.add("POST", "/courses", 422, {"message": "Invalid", "errors": {"title": ["required"]}})
        await courses.list()

        result = await courses.create({"lm_category_id": 2})

        assert isinstance(result, ValidationError)
        assert result.field_errors == {"title": ["required"]}
        # Nothing changed server-side, so the listing stays cached
        assert cache.size(COURSES.tag) == 1

    async def test_create_server_error_keeps_message(self, courses, api):
        api.add("POST", "/courses", 500, {"message": "Storage full"})
        assert await courses.create({"title": "A"}) == Failure("Storage full", 500)

    async def test_create_without_record_is_malformed(self, courses, api, cache):
        api.add("GET", "/courses", json=listing("courses", []))
        api.add("POST", "/courses", 201, {"success": True, "message": "Course created"})
        await courses.list()

        result = await courses.create({"title": "Algebra", "lm_category_id": 2})

        assert result == Failure(MALFORMED_MESSAGE, 201)
        assert cache.size(COURSES.tag) == 1

    async def test_course_create_is_multipart(self, courses, api):
        api.add("POST", "/courses", 201, _ok(COURSE))
        image = Attachment("cover.png", b"\x89PNG", "image/png")

        await courses.create({"title": "Algebra", "branch_ids[]": [1, 2], "featured_image": image})

        request = api.last
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        body = request.content
        assert b'name="title"' in body
        assert body.count(b'name="branch_ids[]"') == 2
        assert b'filename="cover.png"' in body

    async def test_course_update_posts_with_method_override(self, courses, api):
        api.add("POST", "/courses/5", json=_ok(COURSE))

        result = await courses.update(5, {"title": "Algebra II"})

        assert isinstance(result, Ok)
        assert api.last.method == "POST"
        assert b'name="_method"\r\n\r\nPATCH' in api.last.content

    async def test_group_update_is_json_patch(self, groups, api):
        api.add("PATCH", "/groups/3", json=_ok({"id": 3, "group_name": "Evening"}))

        await groups.update(3, {"group_name": "Evening", "lm_course_id": 4})

        assert api.last.method == "PATCH"
        assert api.last.headers["Content-Type"] == "application/json"
        assert b'"lm_course_id":4' in api.last.content.replace(b" ", b"")

    async def test_group_update_failure_keeps_server_message(self, groups, api):
        api.add("PATCH", "/groups/3", 409, {"message": "Group has active students"})
        assert await groups.update(3, {"group_name": "x"}) == Failure("Group has active students", 409)

    async def test_json_resource_rejects_attachments(self, groups):
        with pytest.raises(ValueError):
            await groups.create({"logo": Attachment("a.png", b"", "image/png")})

    async def test_update_invalidates_list(self, groups, api):
        api.add("GET", "/groups", json=listing("groups", []))
        api.add("PATCH", "/groups/3", json=_ok({"id": 3}))

        await groups.list()
        await groups.update(3, {"group_name": "x"})
        await groups.list()

        assert [r.method for r in api.requests] == ["GET", "PATCH", "GET"]

    async def test_delete_invalidates_list(self, courses, api):
        api.add("GET", "/courses", json=listing("courses", [COURSE]))
        api.add("DELETE", "/courses/5", json={"success": True, "message": "Course deleted"})

        await courses.list()
        result = await courses.delete(5)
        await courses.list()

        assert isinstance(result, Ok)
        assert [r.method for r in api.requests] == ["GET", "DELETE", "GET"]

    async def test_failed_delete_keeps_cache(self, courses, api):
        api.add("GET", "/courses", json=listing("courses", [COURSE]))
        api.add("DELETE", "/courses/5", 403, {"message": "Not allowed"})

        await courses.list()
        result = await courses.delete(5)
        await courses.list()

        assert result == Failure("Not allowed", 403)
        assert [r.method for r in api.requests] == ["GET", "DELETE"]

    async def test_invalidation_is_shared_between_clients(self, api, sessions, cache, config):
        api.add("GET", "/courses", json=listing("courses", []))
        api.add("POST", "/courses", 201, _ok(COURSE))
        reader = ResourceClient(COURSES, sessions, cache, config=config, transport=api.transport())
        writer = ResourceClient(COURSES, sessions, cache, config=config, transport=api.transport())

        await reader.list()
        await writer.create({"title": "Algebra"})
        await reader.list()

        assert [r.method for r in api.requests] == ["GET", "POST", "GET"]


def test_encode_multipart():
    image = Attachment("a.png", b"x", "image/png")
    fields, files = encode_multipart({
        "title": "Algebra",
        "is_default": False,
        "branch_ids[]": [1, 2],
        "sub_title": None,
        "featured_image": image,
    })
    assert fields == [("title", "Algebra"), ("is_default", "0"), ("branch_ids[]", "1"), ("branch_ids[]", "2")]
    assert files == {"featured_image": image}


async def test_timeout_is_passed_to_transport(api, sessions, cache, config):
    seen = {}

    def handler(request: httpx.Request):
        seen.update(request.extensions.get("timeout", {}))
        return httpx.Response(200, json=listing("courses", []))

    client = ResourceClient(COURSES, sessions, cache, config=config, transport=httpx.MockTransport(handler), timeout=1.5)
    await client.list()

    assert seen["read"] == 1.5
