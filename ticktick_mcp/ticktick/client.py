"""TickTick Open API client scoped to one local user.

Owns the user's token lifecycle (lazy hydration from the credential store,
proactive refresh on expiry, one refresh-and-retry on 401, cross-instance
refresh coordination through an advisory lock) and the read-after-write
consistency rules for tasks (active-id cache, tombstones for deletes).
"""

import asyncio
import json
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx

from ticktick_mcp.auth.upstream import UpstreamTokenGateway
from ticktick_mcp.core.constants import (
    DEFAULT_TASK_LIMIT,
    MAX_TOMBSTONES,
    REFRESH_LOCK_PREFIX,
    TASK_STATUS_ACTIVE,
)
from ticktick_mcp.core.exceptions import (
    AuthRequired,
    TaskNotFound,
    TokenRefreshFailed,
    UpstreamApiError,
    UpstreamNetworkError,
    UpstreamRateLimited,
    UpstreamTimeoutError,
)
from ticktick_mcp.storage.credential_store import TokenStore
from ticktick_mcp.storage.lock import AdvisoryLock
from ticktick_mcp.storage.models import PersistedTokenSet
from ticktick_mcp.ticktick.due_filters import matches_due_filter
from ticktick_mcp.type_aliases import Project, ProjectData, Task
from ticktick_mcp.utils.http_retry import (
    Sleeper,
    default_sleep,
    retry_delay,
    should_retry_status,
)

logger = logging.getLogger(__name__)


@dataclass
class TokenState:
    """In-memory copy of the user's TickTick grant."""

    access_token: str = ""
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scope: str = ""
    hydrated: bool = False

    def load(self, persisted: PersistedTokenSet | None) -> None:
        self.hydrated = True
        if persisted is None:
            return
        if persisted.access_token:
            self.access_token = persisted.access_token
        self.refresh_token = persisted.refresh_token or self.refresh_token
        self.expires_at = persisted.expires_at or self.expires_at
        if persisted.scope:
            self.scope = persisted.scope

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


@dataclass
class ListTasksResult:
    tasks: list[Task]
    total: int


@dataclass
class _ActiveIds:
    ids: frozenset[str]
    expires_at: float


@dataclass
class _ConsistencyState:
    """Per-client read-after-write bookkeeping."""

    active_ids: dict[str, _ActiveIds] = field(default_factory=dict)
    tombstones: OrderedDict[tuple[str, str], None] = field(default_factory=OrderedDict)

    def bury(self, project_id: str, task_id: str) -> None:
        key = (project_id, task_id)
        self.tombstones[key] = None
        self.tombstones.move_to_end(key)
        while len(self.tombstones) > MAX_TOMBSTONES:
            self.tombstones.popitem(last=False)


def _is_active(task: Task) -> bool:
    status = task.get("status")
    return not isinstance(status, int) or status == TASK_STATUS_ACTIVE


def _task_body(project_id: str, fields: dict[str, Any]) -> dict[str, Any]:
    body = {"projectId": project_id}
    body.update({name: value for name, value in fields.items() if value is not None})
    return body


class TickTickClient:
    """TickTick API access on behalf of one local user.

    One instance is shared by all tool calls of that user within a process;
    other processes coordinate only through the credential store.
    """

    def __init__(
        self,
        user_id: str,
        *,
        http: httpx.AsyncClient,
        token_store: TokenStore,
        lock: AdvisoryLock,
        gateway: UpstreamTokenGateway,
        base_url: str = "https://api.ticktick.com/open/v1",
        timeout: float = 8.0,
        max_attempts: int = 3,
        backoff_base: float = 0.15,
        lock_wait: float = 0.3,
        active_cache_ttl: float = 5.0,
        max_projects: int = 25,
        sleep: Sleeper = default_sleep,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.user_id = user_id
        self._http = http
        self._token_store = token_store
        self._lock = lock
        self._gateway = gateway
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.lock_wait = lock_wait
        self.active_cache_ttl = active_cache_ttl
        self.max_projects = max_projects
        self._sleep = sleep
        self._now = now
        self._monotonic = monotonic

        self.tokens = TokenState()
        self._consistency = _ConsistencyState()
        self._refresh_guard = asyncio.Lock()

    # ========================================
    # Token lifecycle
    # ========================================

    async def _hydrate(self, force: bool = False) -> None:
        if self.tokens.hydrated and not force:
            return
        self.tokens.load(await self._token_store.load(self.user_id))

    async def _refresh(self, stale_token: str) -> None:
        """Replace ``stale_token`` unless another caller already did."""
        async with self._refresh_guard:
            if self.tokens.access_token != stale_token:
                return

            lock_name = f"{REFRESH_LOCK_PREFIX}{self.user_id}"
            if await self._lock.is_held(lock_name):
                await self._sleep(self.lock_wait)
                await self._hydrate(force=True)
                if self.tokens.access_token != stale_token:
                    logger.debug("Token refreshed by another instance for %s", self.user_id)
                    return

            handle = await self._lock.acquire(lock_name)
            try:
                await self._hydrate(force=True)
                if self.tokens.access_token != stale_token:
                    return
                await self._refresh_upstream()
            finally:
                await self._lock.release(handle)

    async def _refresh_upstream(self) -> None:
        if not self.tokens.refresh_token:
            raise AuthRequired()
        try:
            refreshed = await self._gateway.refresh(self.tokens.refresh_token)
        except TokenRefreshFailed as e:
            if e.is_invalid_grant():
                logger.info("TickTick refresh token rejected for user %s", self.user_id)
                raise AuthRequired() from e
            raise

        persisted = refreshed.to_persisted(
            self._now(),
            previous_refresh_token=self.tokens.refresh_token,
            default_scope=self.tokens.scope,
        )
        self.tokens.access_token = persisted.access_token
        self.tokens.refresh_token = persisted.refresh_token
        self.tokens.expires_at = persisted.expires_at
        self.tokens.scope = persisted.scope
        await self._token_store.save(self.user_id, persisted)
        logger.info("Refreshed TickTick token for user %s", self.user_id)

    # ========================================
    # HTTP
    # ========================================

    async def call(self, path: str, method: str = "GET", body: Any = None) -> Any:
        """Call the TickTick API and return the decoded JSON (None when empty)."""
        await self._hydrate()
        if not self.tokens.access_token:
            raise AuthRequired()

        if self.tokens.is_expired(self._now()):
            await self._refresh(self.tokens.access_token)

        url = f"{self.base_url}{path}"
        refreshed_after_unauthorized = False
        attempt = 0
        while attempt < self.max_attempts:
            attempt += 1
            last_attempt = attempt == self.max_attempts
            token = self.tokens.access_token
            try:
                response = await self._http.request(
                    method,
                    url,
                    headers={"Authorization": f"Bearer {token}"},
                    json=body,
                    timeout=httpx.Timeout(self.timeout),
                )
            except httpx.TimeoutException as e:
                if not last_attempt:
                    await self._sleep(retry_delay(attempt, self.backoff_base, None))
                    continue
                raise UpstreamTimeoutError(
                    "TickTick API request timed out", details={"path": path}
                ) from e
            except httpx.TransportError as e:
                if not last_attempt:
                    await self._sleep(retry_delay(attempt, self.backoff_base, None))
                    continue
                raise UpstreamNetworkError(
                    "TickTick API request failed due to timeout or network error",
                    details={"path": path, "cause": str(e)},
                ) from e

            status = response.status_code
            if status == 401:
                if refreshed_after_unauthorized:
                    raise AuthRequired()
                await self._refresh(token)
                refreshed_after_unauthorized = True
                # The retry after a refresh does not count as an attempt
                attempt -= 1
                continue

            if not response.is_success:
                if should_retry_status(status) and not last_attempt:
                    delay = retry_delay(
                        attempt, self.backoff_base, response.headers.get("retry-after")
                    )
                    logger.info("TickTick API %s %s returned %d, retrying", method, path, status)
                    await self._sleep(delay)
                    continue
                if status == 429:
                    raise UpstreamRateLimited()
                raise UpstreamApiError(
                    f"TickTick API request failed ({status})",
                    status=status,
                    details={"path": path, "responseBody": response.text},
                )

            return self._decode(response, path)

        raise UpstreamApiError("TickTick API request retries exhausted", details={"path": path})

    @staticmethod
    def _decode(response: httpx.Response, path: str) -> Any:
        if response.status_code == 204:
            return None
        text = response.text.strip()
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError as e:
            raise UpstreamApiError(
                "TickTick API returned an unparseable response",
                status=response.status_code,
                details={"path": path, "responseBody": text[:500]},
            ) from e

    # ========================================
    # Active task consistency
    # ========================================

    def _remember_active_ids(self, project_id: str, tasks: list[Task]) -> frozenset[str]:
        ids = frozenset(
            str(task["id"]) for task in tasks if "id" in task and _is_active(task)
        )
        self._consistency.active_ids[project_id] = _ActiveIds(
            ids=ids, expires_at=self._monotonic() + self.active_cache_ttl
        )
        return ids

    def invalidate_active_tasks(self, project_id: str) -> None:
        self._consistency.active_ids.pop(project_id, None)

    async def _project_data(self, project_id: str) -> ProjectData:
        data = await self.call(f"/project/{project_id}/data") or {}
        self._remember_active_ids(project_id, data.get("tasks") or [])
        return data

    async def get_active_task_ids(
        self,
        project_id: str,
        force_refresh: bool = False,
    ) -> tuple[frozenset[str], bool]:
        """Active task ids of a project and whether they came from cache."""
        cached = self._consistency.active_ids.get(project_id)
        if not force_refresh and cached and cached.expires_at > self._monotonic():
            return cached.ids, True

        await self._project_data(project_id)
        return self._consistency.active_ids[project_id].ids, False

    # ========================================
    # Projects
    # ========================================

    async def list_projects(self) -> list[Project]:
        return await self.call("/project") or []

    async def get_project(self, project_id: str) -> Project:
        return await self.call(f"/project/{project_id}") or {}

    # ========================================
    # Tasks
    # ========================================

    async def list_tasks(
        self,
        project_id: str | None = None,
        status: int | None = None,
        due_filter: str | None = None,
        limit: int = DEFAULT_TASK_LIMIT,
        offset: int = 0,
    ) -> ListTasksResult:
        """List tasks of one project, or of the first ``max_projects`` projects."""
        tasks: list[Task] = []
        if project_id:
            tasks = list((await self._project_data(project_id)).get("tasks") or [])
        else:
            projects = await self.list_projects()
            for project in projects[: self.max_projects]:
                data = await self._project_data(project["id"])
                tasks.extend(data.get("tasks") or [])

        if status is not None:
            tasks = [task for task in tasks if task.get("status") == status]

        if due_filter:
            now = self._now()
            tasks = [task for task in tasks if matches_due_filter(task, due_filter, now)]

        return ListTasksResult(tasks=tasks[offset : offset + limit], total=len(tasks))

    async def get_task(self, project_id: str, task_id: str) -> Task:
        """Fetch a task, refusing ones this client deleted or TickTick no longer lists."""
        if (project_id, task_id) in self._consistency.tombstones:
            raise TaskNotFound()

        task = await self.call(f"/project/{project_id}/task/{task_id}")
        if not task:
            raise TaskNotFound()

        # The detail endpoint can still resolve deleted ids
        if _is_active(task):
            ids, from_cache = await self.get_active_task_ids(project_id)
            if task_id not in ids and from_cache:
                ids, _ = await self.get_active_task_ids(project_id, force_refresh=True)
            if task_id not in ids:
                raise TaskNotFound()

        return task

    async def create_task(self, project_id: str, title: str, **fields: Any) -> Task:
        task = await self.call(
            "/task", "POST", _task_body(project_id, {"title": title, **fields})
        )
        self.invalidate_active_tasks(project_id)
        return task or {}

    async def update_task(self, project_id: str, task_id: str, **fields: Any) -> Task:
        body = _task_body(project_id, fields)
        body["id"] = task_id
        task = await self.call(f"/task/{task_id}", "POST", body)
        self.invalidate_active_tasks(project_id)
        return task or {}

    async def complete_task(self, project_id: str, task_id: str) -> None:
        await self.call(f"/project/{project_id}/task/{task_id}/complete", "POST")
        self.invalidate_active_tasks(project_id)

    async def delete_task(self, project_id: str, task_id: str) -> None:
        await self.call(f"/project/{project_id}/task/{task_id}", "DELETE")
        self._consistency.bury(project_id, task_id)
        self.invalidate_active_tasks(project_id)
