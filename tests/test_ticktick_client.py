"""
Tests for the TickTick API client.

Covers the token lifecycle (401 refresh-and-retry, proactive refresh,
rotation, cross-instance coordination), retry mapping, and the task
consistency rules (active-id cache, tombstones, due date filters).
"""

import asyncio
import json
from datetime import UTC, datetime
from unittest.mock import patch

import httpx
import pytest

from ticktick_mcp.core.exceptions import (
    AuthRequired,
    TaskNotFound,
    UpstreamApiError,
    UpstreamNetworkError,
    UpstreamRateLimited,
    UpstreamTimeoutError,
)
from ticktick_mcp.ticktick.client import TickTickClient, TokenState
from ticktick_mcp.ticktick.registry import ClientRegistry

from tests.helpers import API_BASE_URL, UpstreamRecorder, json_response, make_gateway

FIXED_NOW = datetime(2025, 3, 12, 9, 0, tzinfo=UTC)


def token_response(access: str, refresh: str | None = None, expires_in: int = 3600):
    body = {"access_token": access, "expires_in": expires_in}
    if refresh:
        body["refresh_token"] = refresh
    return json_response(body)


def unauthorized() -> httpx.Response:
    return httpx.Response(401, text="unauthorized")


def task_json(task_id: str, status: int = 0, **extra) -> dict:
    return {"id": task_id, "projectId": "p1", "title": f"Task {task_id}", "status": status, **extra}


class TestTokenLifecycle:
    """Tests for hydration, refresh and re-authorization."""

    @pytest.mark.asyncio
    async def test_refreshes_token_after_401_and_retries_once(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(
            unauthorized(),
            token_response("refreshed-token", "refreshed-refresh"),
            json_response([{"id": "p1", "name": "Inbox"}]),
        )
        client = make_client(upstream)

        projects = await client.list_projects()

        assert len(projects) == 1
        # original + refresh + retry
        assert len(upstream.requests) == 3
        assert upstream.requests[2].headers["authorization"] == "Bearer refreshed-token"

    @pytest.mark.asyncio
    async def test_refresh_persists_new_grant(self, make_client, seed_tokens, token_store):
        await seed_tokens()
        upstream = UpstreamRecorder(
            unauthorized(),
            token_response("refreshed-token", "refreshed-refresh"),
            json_response([]),
        )

        await make_client(upstream).list_projects()

        persisted = await token_store.load("u1")
        assert persisted.access_token == "refreshed-token"
        assert persisted.refresh_token == "refreshed-refresh"
        assert persisted.expires_at is not None

    @pytest.mark.asyncio
    async def test_refresh_keeps_old_refresh_token_when_not_rotated(
        self, make_client, seed_tokens, token_store
    ):
        await seed_tokens()
        upstream = UpstreamRecorder(
            unauthorized(),
            token_response("refreshed-token"),
            json_response([]),
        )

        await make_client(upstream).list_projects()

        persisted = await token_store.load("u1")
        assert persisted.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_uses_rotated_refresh_token_on_next_refresh(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(
            unauthorized(),
            token_response("refreshed-token-1", "refreshed-refresh-1"),
            json_response([{"id": "p1", "name": "Inbox"}]),
            unauthorized(),
            token_response("refreshed-token-2", "refreshed-refresh-2"),
            json_response([{"id": "p2", "name": "Work"}]),
        )
        client = make_client(upstream)

        first = await client.list_projects()
        second = await client.list_projects()

        assert len(first) == 1
        assert len(second) == 1
        assert "refresh_token=refresh-1" in upstream.requests[1].content.decode()
        assert "refresh_token=refreshed-refresh-1" in upstream.requests[4].content.decode()

    @pytest.mark.asyncio
    async def test_refresh_invalid_grant_requires_reauthorization(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(
            unauthorized(),
            json_response({"error": "invalid_grant"}, status=400),
        )

        with pytest.raises(AuthRequired):
            await make_client(upstream).list_projects()

    @pytest.mark.asyncio
    async def test_missing_tokens_require_authorization_without_calling_upstream(
        self, make_client
    ):
        upstream = UpstreamRecorder()

        with pytest.raises(AuthRequired):
            await make_client(upstream).list_projects()

        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_401_without_refresh_token_requires_reauthorization(
        self, make_client, seed_tokens
    ):
        await seed_tokens(refresh_token=None)
        upstream = UpstreamRecorder(unauthorized())

        with pytest.raises(AuthRequired):
            await make_client(upstream).list_projects()

        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_second_401_after_refresh_requires_reauthorization(
        self, make_client, seed_tokens
    ):
        await seed_tokens()
        upstream = UpstreamRecorder(
            unauthorized(),
            token_response("refreshed-token", "refreshed-refresh"),
            unauthorized(),
        )

        with pytest.raises(AuthRequired):
            await make_client(upstream).list_projects()

        assert len(upstream.requests) == 3

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed_before_the_call(self, make_client, seed_tokens):
        await seed_tokens(expires_in=-10)
        upstream = UpstreamRecorder(
            token_response("fresh-token", "fresh-refresh"),
            json_response([]),
        )

        await make_client(upstream).list_projects()

        assert upstream.requests[0].url.path == "/oauth/token"
        assert upstream.requests[1].headers["authorization"] == "Bearer fresh-token"

    @pytest.mark.asyncio
    async def test_concurrent_instances_refresh_once(self, store, token_store, lock, seed_tokens):
        """Two clients sharing the credential store issue a single refresh."""
        await seed_tokens(expires_in=-10)
        token_posts = []

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0)
            if request.url.path == "/oauth/token":
                token_posts.append(request)
                return token_response("token-2", "refresh-2")
            return json_response([{"id": "p1", "name": "Inbox"}])

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        def build() -> TickTickClient:
            return TickTickClient(
                "u1",
                http=http,
                token_store=token_store,
                lock=lock,
                gateway=make_gateway(http),
                base_url=API_BASE_URL,
                lock_wait=0.05,
                sleep=asyncio.sleep,
            )

        first, second = build(), build()
        await asyncio.gather(first.list_projects(), second.list_projects())

        assert len(token_posts) == 1
        assert first.tokens.access_token == "token-2"
        assert second.tokens.access_token == "token-2"


class TestRetries:
    """Tests for retry and error mapping of API calls."""

    @pytest.mark.asyncio
    async def test_429_exhaustion_maps_to_rate_limited(self, make_client, seed_tokens, no_sleep):
        await seed_tokens()
        upstream = UpstreamRecorder(*[httpx.Response(429, text="limited") for _ in range(3)])

        with pytest.raises(UpstreamRateLimited):
            await make_client(upstream).list_projects()

        assert len(upstream.requests) == 3
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_after_header_sets_delay(self, make_client, seed_tokens, no_sleep):
        await seed_tokens()
        upstream = UpstreamRecorder(
            httpx.Response(429, headers={"retry-after": "2"}),
            json_response([]),
        )

        await make_client(upstream).list_projects()

        no_sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(
            httpx.Response(503),
            json_response([{"id": "p1", "name": "Inbox"}]),
        )

        projects = await make_client(upstream).list_projects()

        assert projects == [{"id": "p1", "name": "Inbox"}]
        assert len(upstream.requests) == 2

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(httpx.Response(404, text="missing"))

        with pytest.raises(UpstreamApiError) as exc_info:
            await make_client(upstream).get_project("p9")

        assert exc_info.value.status == 404
        assert exc_info.value.details["path"] == "/project/p9"
        assert exc_info.value.details["responseBody"] == "missing"

    @pytest.mark.asyncio
    async def test_timeouts_map_to_timeout_error(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(*[httpx.ReadTimeout("timed out") for _ in range(3)])

        with pytest.raises(UpstreamTimeoutError):
            await make_client(upstream).list_projects()

        assert len(upstream.requests) == 3

    @pytest.mark.asyncio
    async def test_api_timeout_reaches_the_transport(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(json_response([]))

        await make_client(upstream, timeout=20.0).list_projects()

        assert upstream.requests[0].extensions["timeout"] == httpx.Timeout(20.0).as_dict()

    @pytest.mark.asyncio
    async def test_network_errors_map_to_network_error(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(*[httpx.ConnectError("refused") for _ in range(3)])

        with pytest.raises(UpstreamNetworkError):
            await make_client(upstream).list_projects()

    @pytest.mark.asyncio
    async def test_unparseable_body_is_an_api_error(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(UpstreamApiError, match="unparseable"):
            await make_client(upstream).list_projects()


class TestGetTask:
    """Tests for read-after-write consistency of get_task."""

    @pytest.mark.asyncio
    async def test_active_task_missing_from_project_data_is_not_found(
        self, make_client, seed_tokens
    ):
        await seed_tokens()
        upstream = UpstreamRecorder(
            json_response(task_json("t1")),
            json_response({"tasks": [task_json("t2")]}),
        )

        with pytest.raises(TaskNotFound):
            await make_client(upstream).get_task("p1", "t1")

    @pytest.mark.asyncio
    async def test_completed_task_is_returned_without_project_lookup(
        self, make_client, seed_tokens
    ):
        await seed_tokens()
        upstream = UpstreamRecorder(json_response(task_json("t1", status=2)))

        task = await make_client(upstream).get_task("p1", "t1")

        assert task["status"] == 2
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_large_projects_are_fully_checked(self, make_client, seed_tokens):
        await seed_tokens()
        active = [task_json(f"task-{i}") for i in range(1, 6002)]
        upstream = UpstreamRecorder(
            json_response(task_json("task-6001")),
            json_response({"tasks": active}),
        )

        task = await make_client(upstream).get_task("p1", "task-6001")

        assert task["id"] == "task-6001"

    @pytest.mark.asyncio
    async def test_miss_against_cached_ids_refetches_project_data(
        self, make_client, seed_tokens
    ):
        await seed_tokens()
        upstream = UpstreamRecorder(
            json_response(task_json("t1")),
            json_response({"tasks": [task_json("t1")]}),
            json_response(task_json("t2")),
            json_response({"tasks": [task_json("t1"), task_json("t2")]}),
        )
        client = make_client(upstream)

        await client.get_task("p1", "t1")  # primes the cache
        task = await client.get_task("p1", "t2")

        assert task["id"] == "t2"
        # get_task + project data, then get_task + forced project data refresh
        assert len(upstream.requests) == 4

    @pytest.mark.asyncio
    async def test_miss_confirmed_by_refetch_is_not_found(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(
            json_response(task_json("t1")),
            json_response({"tasks": [task_json("t1")]}),
            json_response(task_json("t2")),
            json_response({"tasks": [task_json("t1")]}),
        )
        client = make_client(upstream)

        await client.get_task("p1", "t1")
        with pytest.raises(TaskNotFound):
            await client.get_task("p1", "t2")

        assert len(upstream.requests) == 4

    @pytest.mark.asyncio
    async def test_hit_against_cached_ids_skips_project_data(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(
            json_response(task_json("t1")),
            json_response({"tasks": [task_json("t1"), task_json("t2")]}),
            json_response(task_json("t2")),
        )
        client = make_client(upstream)

        await client.get_task("p1", "t1")
        await client.get_task("p1", "t2")

        assert len(upstream.requests) == 3

    @pytest.mark.asyncio
    async def test_expired_cache_is_refetched(self, make_client, seed_tokens):
        await seed_tokens()
        clock = [100.0]
        upstream = UpstreamRecorder(
            json_response(task_json("t1")),
            json_response({"tasks": [task_json("t1")]}),
            json_response(task_json("t1")),
            json_response({"tasks": [task_json("t1")]}),
        )
        client = make_client(upstream, active_cache_ttl=5, monotonic=lambda: clock[0])

        await client.get_task("p1", "t1")
        clock[0] += 6
        await client.get_task("p1", "t1")

        assert upstream.paths().count("/open/v1/project/p1/data") == 2

    @pytest.mark.asyncio
    async def test_deleted_task_is_not_found_without_upstream_call(
        self, make_client, seed_tokens
    ):
        await seed_tokens()
        upstream = UpstreamRecorder(httpx.Response(204))
        client = make_client(upstream)

        await client.delete_task("p1", "t1")
        with pytest.raises(TaskNotFound):
            await client.get_task("p1", "t1")

        # the tombstone answers without calling TickTick
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_oldest_tombstones_are_forgotten(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(*[httpx.Response(204) for _ in range(3)])
        client = make_client(upstream)

        with patch("ticktick_mcp.ticktick.client.MAX_TOMBSTONES", 2):
            for task_id in ("t1", "t2", "t3"):
                await client.delete_task("p1", task_id)

        assert list(client._consistency.tombstones) == [("p1", "t2"), ("p1", "t3")]

    @pytest.mark.asyncio
    async def test_empty_detail_body_is_not_found(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(httpx.Response(200, text=""))

        with pytest.raises(TaskNotFound):
            await make_client(upstream).get_task("p1", "t1")


class TestMutations:
    """Tests for task writes and cache invalidation."""

    @pytest.mark.asyncio
    async def test_create_task_sends_fields_and_invalidates_cache(
        self, make_client, seed_tokens
    ):
        await seed_tokens()
        upstream = UpstreamRecorder(
            json_response(task_json("t1")),
            json_response({"tasks": [task_json("t1")]}),
            json_response(task_json("t3")),
            json_response(task_json("t3")),
            json_response({"tasks": [task_json("t1"), task_json("t3")]}),
        )
        client = make_client(upstream)

        await client.get_task("p1", "t1")
        created = await client.create_task("p1", "Write report", priority=3)
        fetched = await client.get_task("p1", "t3")

        assert created["id"] == "t3"
        assert fetched["id"] == "t3"
        create_request = upstream.requests[2]
        assert create_request.method == "POST"
        assert create_request.url.path == "/open/v1/task"
        body = json.loads(create_request.content)
        assert body == {"projectId": "p1", "title": "Write report", "priority": 3}
        # the project data was refetched after the create, not served from cache
        assert len(upstream.requests) == 5

    @pytest.mark.asyncio
    async def test_update_task_posts_to_task_path_with_id(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(json_response(task_json("t1", title="Renamed")))

        task = await make_client(upstream).update_task("p1", "t1", title="Renamed")

        request = upstream.requests[0]
        assert request.url.path == "/open/v1/task/t1"
        body = json.loads(request.content)
        assert body == {"projectId": "p1", "title": "Renamed", "id": "t1"}
        assert task["title"] == "Renamed"

    @pytest.mark.asyncio
    async def test_complete_task_posts_to_complete_path(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(httpx.Response(200))

        await make_client(upstream).complete_task("p1", "t1")

        assert upstream.requests[0].method == "POST"
        assert upstream.requests[0].url.path == "/open/v1/project/p1/task/t1/complete"


class TestListTasks:
    """Tests for task listing filters and pagination."""

    @pytest.mark.asyncio
    async def test_without_project_scans_capped_project_list(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(
            json_response([{"id": "p1"}, {"id": "p2"}, {"id": "p3"}]),
            json_response({"tasks": [task_json("a")]}),
            json_response({"tasks": [task_json("b")]}),
        )

        result = await make_client(upstream, max_projects=2).list_tasks()

        assert [task["id"] for task in result.tasks] == ["a", "b"]
        assert upstream.paths() == [
            "/open/v1/project",
            "/open/v1/project/p1/data",
            "/open/v1/project/p2/data",
        ]

    @pytest.mark.asyncio
    async def test_status_filter_and_pagination(self, make_client, seed_tokens):
        await seed_tokens()
        tasks = [task_json(f"t{i}", status=0 if i % 2 else 2) for i in range(1, 8)]
        upstream = UpstreamRecorder(json_response({"tasks": tasks}))

        result = await make_client(upstream).list_tasks(
            project_id="p1", status=0, limit=2, offset=1
        )

        assert result.total == 4
        assert [task["id"] for task in result.tasks] == ["t3", "t5"]

    @pytest.mark.asyncio
    async def test_due_filter_today_excludes_overdue_and_future(self, make_client, seed_tokens):
        await seed_tokens()
        upstream = UpstreamRecorder(
            json_response(
                {
                    "tasks": [
                        task_json("today", dueDate="2025-03-12T10:00:00.000+0000", timeZone="UTC"),
                        task_json("yesterday", dueDate="2025-03-11T10:00:00.000+0000", timeZone="UTC"),
                        task_json("tomorrow", dueDate="2025-03-13T10:00:00.000+0000", timeZone="UTC"),
                        task_json("undated"),
                    ]
                }
            )
        )

        result = await make_client(upstream, now=lambda: FIXED_NOW).list_tasks(
            project_id="p1", due_filter="today"
        )

        assert [task["id"] for task in result.tasks] == ["today"]

    @pytest.mark.asyncio
    async def test_due_filter_this_week_spans_today_plus_six_days(
        self, make_client, seed_tokens
    ):
        await seed_tokens()
        upstream = UpstreamRecorder(
            json_response(
                {
                    "tasks": [
                        task_json("yesterday", dueDate="2025-03-11T10:00:00.000+0000", timeZone="UTC"),
                        task_json("today", dueDate="2025-03-12T10:00:00.000+0000", timeZone="UTC"),
                        task_json("plus6", dueDate="2025-03-18T10:00:00.000+0000", timeZone="UTC"),
                        task_json("plus7", dueDate="2025-03-19T10:00:00.000+0000", timeZone="UTC"),
                    ]
                }
            )
        )

        result = await make_client(upstream, now=lambda: FIXED_NOW).list_tasks(
            project_id="p1", due_filter="this_week"
        )

        assert [task["id"] for task in result.tasks] == ["today", "plus6"]


class TestTokenState:
    """Tests for the in-memory token copy."""

    def test_unhydrated_state_has_no_token(self):
        state = TokenState()

        assert state.access_token == ""
        assert state.hydrated is False
        assert state.is_expired(FIXED_NOW) is False

    def test_load_none_marks_hydrated(self):
        state = TokenState()

        state.load(None)

        assert state.hydrated is True
        assert state.access_token == ""


class TestClientRegistry:
    """Tests for per-user client instances."""

    def test_returns_one_client_per_user(self):
        created = []

        def factory(user_id):
            created.append(user_id)
            return object()

        registry = ClientRegistry(factory)

        assert registry.get("u1") is registry.get("u1")
        assert registry.get("u2") is not registry.get("u1")
        assert created == ["u1", "u2"]
        assert len(registry) == 2

    def test_least_recently_used_client_is_evicted(self):
        registry = ClientRegistry(lambda user_id: object(), max_clients=2)
        first = registry.get("u1")
        registry.get("u2")
        registry.get("u1")

        registry.get("u3")

        assert len(registry) == 2
        assert registry.get("u1") is first
        assert "u2" not in registry._clients
