"""
Cached, continuously refreshed views over the Encore API.

Every backend resource lives in a QueryCache entry keyed by a tuple such as
("jobs", params), ("job", job_id) or ("queue",). Reads are served from the
cache while the entry is younger than its staleness window; subscriptions
re-read on a fixed interval; mutations invalidate or seed the entries they
affect.

Concurrent reads of one key share a single backend request, and all
subscriptions on a key share a single refresh loop. Completions are applied
per key in sequence order: once a fetch has been applied, results of
fetches started before it are discarded. Entries nobody watches or reads
for `gc_time` seconds are dropped.
"""
import asyncio
import itertools
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Tuple

from encore_console.client.aggregation import count_statuses, sort_queue
from encore_console.client.backend import EncoreClient
from encore_console.core.exceptions import BackendRequestError
from encore_console.core.logging import logger
from encore_console.models.job import (
    EncoreJob,
    EncoreJobRequest,
    JobListParams,
    JobStatus,
    PagedJobs,
    QueueItem,
)
from encore_console.models.responses import StatusCounts


Key = Tuple[Hashable, ...]
Fetcher = Callable[[], Awaitable[Any]]
Listener = Callable[["QuerySnapshot"], None]


@dataclass(frozen=True)
class QueryPolicy:
    """Staleness window and background refresh interval, in seconds."""
    stale_time: float
    refetch_interval: Optional[float] = None


@dataclass(frozen=True)
class SyncPolicies:
    jobs: QueryPolicy = QueryPolicy(stale_time=30.0, refetch_interval=5.0)
    job: QueryPolicy = QueryPolicy(stale_time=10.0, refetch_interval=2.0)
    queue: QueryPolicy = QueryPolicy(stale_time=10.0, refetch_interval=3.0)


@dataclass(frozen=True)
class QuerySnapshot:
    """
    State of one cache entry.

    A failed refresh keeps the last good `data` and sets `error`; whether to
    show stale data is up to the caller.
    """
    key: Key
    data: Any = None
    error: Optional[BackendRequestError] = None
    updated_at: Optional[float] = None
    is_stale: bool = True
    is_invalidated: bool = False
    event: str = "update"


@dataclass
class _Entry:
    data: Any = None
    error: Optional[BackendRequestError] = None
    updated_at: Optional[float] = None
    stale_time: Optional[float] = None
    invalidated: bool = False
    epoch: int = 0
    applied_seq: int = 0
    last_used: Optional[float] = None
    inflight: Optional[asyncio.Task] = None
    inflight_epoch: int = 0

    @property
    def loading(self) -> bool:
        return self.inflight is not None and not self.inflight.done()


def _matches(key: Key, prefix: Key) -> bool:
    return key[:len(prefix)] == prefix


class QueryCache:
    """Keyed cache of backend reads with retry and ordering rules."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        max_retry_delay: float = 30.0,
        gc_time: float = 300.0,
    ):
        self._clock = clock
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.gc_time = gc_time
        self._entries: Dict[Key, _Entry] = {}
        self._listeners: Dict[Key, List[Listener]] = {}
        self._pollers: Dict[Key, "_Poller"] = {}
        self._seq = itertools.count(1)

    def __contains__(self, key: Key) -> bool:
        return key in self._entries

    def _entry(self, key: Key) -> _Entry:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.last_used = self._clock()
        return entry

    def _is_stale(self, entry: _Entry) -> bool:
        if entry.updated_at is None or entry.invalidated:
            return True
        if entry.stale_time is None:
            return False
        return self._clock() - entry.updated_at >= entry.stale_time

    def snapshot(self, key: Key, event: str = "update") -> QuerySnapshot:
        entry = self._entries.get(key)
        if entry is None:
            return QuerySnapshot(key, event=event)
        return QuerySnapshot(
            key=key,
            data=entry.data,
            error=entry.error,
            updated_at=entry.updated_at,
            is_stale=self._is_stale(entry),
            is_invalidated=entry.invalidated,
            event=event,
        )

    def apply_policy(self, key: Key, policy: QueryPolicy):
        """Use the staleness window of `policy` for the entry at `key`."""
        self._entry(key).stale_time = policy.stale_time

    # Listeners

    def subscribe(self, key: Key, listener: Listener) -> Callable[[], None]:
        """Call `listener` with a snapshot whenever the entry changes."""
        self._listeners.setdefault(key, []).append(listener)

        def unsubscribe():
            listeners = self._listeners.get(key, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(key, None)
                # Unobserved from now on; eviction counts from here
                entry = self._entries.get(key)
                if entry is not None:
                    entry.last_used = self._clock()

        return unsubscribe

    def _call(self, key: Key, listener: Listener, snapshot: QuerySnapshot):
        try:
            listener(snapshot)
        except Exception:
            logger.exception(f"Listener for {key} failed")

    def _notify(self, key: Key, event: str = "update"):
        snapshot = self.snapshot(key, event)
        for listener in list(self._listeners.get(key, [])):
            self._call(key, listener, snapshot)

    # Eviction

    def _observed(self, key: Key) -> bool:
        return key in self._listeners or key in self._pollers

    def collect(self) -> int:
        """
        Drop entries that nobody watches and nobody has read for `gc_time`.

        Entries with a read in flight are kept. Returns how many were dropped.
        """
        now = self._clock()
        expired = [
            key for key, entry in self._entries.items()
            if not self._observed(key)
            and not entry.loading
            and entry.last_used is not None
            and now - entry.last_used >= self.gc_time
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} unused queries")
        return len(expired)

    # Reads

    def is_fresh(self, key: Key, policy: QueryPolicy) -> bool:
        """True when the entry can be served without a backend read."""
        entry = self._entries.get(key)
        if entry is None or entry.updated_at is None or entry.invalidated:
            return False
        return self._clock() - entry.updated_at < policy.stale_time

    async def fetch(self, key: Key, fetcher: Fetcher, policy: QueryPolicy) -> Any:
        """Cached data if still fresh, otherwise a fresh backend read."""
        self.collect()
        entry = self._entry(key)
        entry.stale_time = policy.stale_time
        if self.is_fresh(key, policy):
            return entry.data
        return await self.refetch(key, fetcher, dedupe=True)

    async def refetch(self, key: Key, fetcher: Fetcher, dedupe: bool = False) -> Any:
        """
        Read from the backend regardless of staleness.

        With `dedupe`, a read of the same key already in flight is joined
        instead of starting another, unless it began before the entry was
        last invalidated. Without it a new read always starts and supersedes
        any earlier one.

        Raises:
            BackendRequestError: After retries are exhausted, or at once for
                4xx responses
        """
        entry = self._entry(key)
        task = entry.inflight
        if not (dedupe and entry.loading and entry.inflight_epoch == entry.epoch):
            task = asyncio.create_task(self._load(key, entry, fetcher, next(self._seq)))
            entry.inflight = task
            entry.inflight_epoch = entry.epoch
        # A cancelled caller leaves the shared read running for the others
        return await asyncio.shield(task)

    async def _load(self, key: Key, entry: _Entry, fetcher: Fetcher, seq: int) -> Any:
        epoch = entry.epoch

        try:
            data = await self._with_retry(key, fetcher)
        except BackendRequestError as e:
            if self._entries.get(key) is entry and seq > entry.applied_seq:
                entry.applied_seq = seq
                entry.error = e
                self._notify(key, "error")
            raise

        if self._entries.get(key) is not entry:
            logger.debug(f"Discarding result for removed query {key}")
            return data
        if seq < entry.applied_seq:
            logger.debug(f"Discarding out-of-order result for {key}")
            return entry.data

        entry.applied_seq = seq
        entry.data = data
        entry.error = None
        entry.updated_at = self._clock()
        # Started before an invalidation: keep the data but stay stale
        entry.invalidated = epoch != entry.epoch
        self._notify(key)
        return data

    async def _with_retry(self, key: Key, fetcher: Fetcher) -> Any:
        attempt = 0
        while True:
            try:
                return await fetcher()
            except BackendRequestError as e:
                if e.is_client_error or attempt >= self.max_retries:
                    raise
                delay = min(self.retry_delay * 2 ** attempt, self.max_retry_delay)
                attempt += 1
                logger.warning(
                    f"Fetching {key} failed: {e.message}; "
                    f"retry {attempt}/{self.max_retries} in {delay}s"
                )
                await asyncio.sleep(delay)

    # Writes

    def set_data(self, key: Key, data: Any):
        """Seed an entry with data known to be current."""
        entry = self._entry(key)
        entry.applied_seq = next(self._seq)
        entry.data = data
        entry.error = None
        entry.updated_at = self._clock()
        entry.invalidated = False
        self._notify(key)

    def invalidate(self, prefix: Key) -> int:
        """Mark every entry under `prefix` stale; returns how many."""
        matched = [key for key in self._entries if _matches(key, prefix)]
        for key in matched:
            entry = self._entries[key]
            entry.invalidated = True
            entry.epoch += 1
        for key in matched:
            self._notify(key, "invalidate")
        return len(matched)

    def remove(self, prefix: Key) -> int:
        """Drop every entry under `prefix`; in-flight results are discarded."""
        matched = [key for key in self._entries if _matches(key, prefix)]
        for key in matched:
            del self._entries[key]
        for key in matched:
            self._notify(key, "remove")
        return len(matched)

    # Background refresh

    def _poller(self, key: Key, fetcher: Fetcher) -> "_Poller":
        poller = self._pollers.get(key)
        if poller is None:
            poller = self._pollers[key] = _Poller(self, key, fetcher)
        return poller


class _Poller:
    """
    The refresh loop of one key, shared by every Subscription on it.

    Re-reads at the shortest interval any of its subscriptions asks for, and
    right after the entry is invalidated. Ends with its last subscription.
    """

    def __init__(self, cache: QueryCache, key: Key, fetcher: Fetcher):
        self.key = key
        self.subscriptions: List["Subscription"] = []
        self.fetching = False
        self._cache = cache
        self._fetcher = fetcher
        self._wake = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe = cache.subscribe(key, self._on_change)

    @property
    def interval(self) -> Optional[float]:
        intervals = [
            s.policy.refetch_interval for s in self.subscriptions
            if s.policy.refetch_interval is not None
        ]
        return min(intervals) if intervals else None

    def add(self, subscription: "Subscription"):
        self.subscriptions.append(subscription)
        if self._task is None:
            self._task = asyncio.create_task(self._run())
        elif self._cache.is_fresh(self.key, subscription.policy):
            asyncio.get_running_loop().call_soon(subscription.deliver_current)
        elif not self.fetching:
            self._wake.set()

    def discard(self, subscription: "Subscription") -> Optional[asyncio.Task]:
        """Detach; returns the loop task once the last subscription is gone."""
        if subscription in self.subscriptions:
            self.subscriptions.remove(subscription)
        if self.subscriptions:
            return None
        self._unsubscribe()
        if self._cache._pollers.get(self.key) is self:
            del self._cache._pollers[self.key]
        # A read in flight still completes and lands in the cache
        if self._task is not None and not self.fetching:
            self._task.cancel()
        return self._task

    def _on_change(self, snapshot: QuerySnapshot):
        # Re-read after an invalidation, including one that raced a fetch
        if snapshot.event == "invalidate" or (snapshot.event == "update" and snapshot.is_invalidated):
            self._wake.set()

    async def _read(self):
        self.fetching = True
        try:
            await self._cache.refetch(self.key, self._fetcher, dedupe=True)
        except BackendRequestError as e:
            # Already recorded on the entry and delivered to listeners
            logger.warning(f"Refresh of {self.key} failed: {e.message}")
        finally:
            self.fetching = False

    async def _run(self):
        if not self.subscriptions:
            return
        # Subscriptions added before the first read are served by it
        self._wake.clear()
        first = self.subscriptions[0]
        if self._cache.is_fresh(self.key, first.policy):
            first.deliver_current()
        else:
            await self._read()
        while self.subscriptions:
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()
            if not self.subscriptions:
                break
            await self._read()


class Subscription:
    """
    Keeps one cache entry refreshed while a view is open.

    Performs an initial read, then re-reads every `refetch_interval` seconds
    and immediately after the entry is invalidated. Subscriptions on the same
    key share one read loop. `close()` detaches this view; a read already in
    flight still completes and updates the cache, but is no longer delivered
    to this listener.
    """

    def __init__(
        self,
        cache: QueryCache,
        key: Key,
        fetcher: Fetcher,
        policy: QueryPolicy,
        listener: Listener,
    ):
        self.key = key
        self.policy = policy
        self._cache = cache
        self._fetcher = fetcher
        self._listener = listener
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._poller: Optional[_Poller] = None
        self._task: Optional[asyncio.Task] = None
        self.active = False

    def start(self) -> "Subscription":
        self.active = True
        self._cache.apply_policy(self.key, self.policy)
        self._unsubscribe = self._cache.subscribe(self.key, self._deliver)
        self._poller = self._cache._poller(self.key, self._fetcher)
        self._poller.add(self)
        return self

    def _deliver(self, snapshot: QuerySnapshot):
        if self.active:
            self._listener(snapshot)

    def deliver_current(self):
        """Hand the listener what the cache holds now."""
        self._cache._call(self.key, self._deliver, self._cache.snapshot(self.key))

    def close(self):
        """Stop refreshing and detach the listener."""
        if not self.active:
            return
        self.active = False
        if self._unsubscribe is not None:
            self._unsubscribe()
        if self._poller is not None:
            self._task = self._poller.discard(self)

    async def stop(self):
        """Close and wait for the shared loop to finish if this was its last view."""
        self.close()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass


JOBS_ROOT: Key = ("jobs",)
QUEUE_KEY: Key = ("queue",)


def _params_key(params: Optional[JobListParams]) -> Key:
    return tuple(params.to_query()) if params is not None else ()


class EncoreSync:
    """
    Synchronized access to Encore jobs and queue.

    Wraps EncoreClient with the cache policy of each resource and the
    invalidation rules of each mutation. Mutations are never retried.
    """

    def __init__(
        self,
        client: EncoreClient,
        cache: Optional[QueryCache] = None,
        policies: Optional[SyncPolicies] = None,
    ):
        self.client = client
        self.cache = cache or QueryCache()
        self.policies = policies or SyncPolicies()
        self._subscriptions: List[Subscription] = []

    # Keys

    @staticmethod
    def jobs_key(params: Optional[JobListParams] = None) -> Key:
        return JOBS_ROOT + (_params_key(params),)

    @staticmethod
    def jobs_by_status_key(status: JobStatus, params: Optional[JobListParams] = None) -> Key:
        return JOBS_ROOT + ("by-status", JobStatus(status).value, _params_key(params))

    @staticmethod
    def job_key(job_id: str) -> Key:
        return ("job", job_id)

    # Reads

    async def jobs(self, params: Optional[JobListParams] = None) -> PagedJobs:
        return await self.cache.fetch(
            self.jobs_key(params),
            lambda: self.client.list_jobs(params),
            self.policies.jobs,
        )

    async def jobs_by_status(
        self,
        status: JobStatus,
        params: Optional[JobListParams] = None,
    ) -> PagedJobs:
        return await self.cache.fetch(
            self.jobs_by_status_key(status, params),
            lambda: self.client.find_by_status(status, params),
            self.policies.jobs,
        )

    async def job(self, job_id: str) -> EncoreJob:
        if not job_id:
            raise ValueError("job_id is required")
        return await self.cache.fetch(
            self.job_key(job_id),
            lambda: self.client.get_job(job_id),
            self.policies.job,
        )

    async def queue(self) -> List[QueueItem]:
        return await self.cache.fetch(QUEUE_KEY, self.client.get_queue, self.policies.queue)

    async def sorted_queue(self) -> List[QueueItem]:
        return sort_queue(await self.queue())

    async def status_counts(self) -> StatusCounts:
        return count_statuses(await self.jobs())

    def snapshot(self, key: Key) -> QuerySnapshot:
        return self.cache.snapshot(key)

    # Subscriptions

    def _watch(self, key: Key, fetcher: Fetcher, policy: QueryPolicy, listener: Listener) -> Subscription:
        subscription = Subscription(self.cache, key, fetcher, policy, listener).start()
        self._subscriptions.append(subscription)
        return subscription

    def watch_jobs(self, listener: Listener, params: Optional[JobListParams] = None) -> Subscription:
        return self._watch(
            self.jobs_key(params),
            lambda: self.client.list_jobs(params),
            self.policies.jobs,
            listener,
        )

    def watch_jobs_by_status(
        self,
        status: JobStatus,
        listener: Listener,
        params: Optional[JobListParams] = None,
    ) -> Subscription:
        return self._watch(
            self.jobs_by_status_key(status, params),
            lambda: self.client.find_by_status(status, params),
            self.policies.jobs,
            listener,
        )

    def watch_job(self, job_id: str, listener: Listener) -> Subscription:
        if not job_id:
            raise ValueError("job_id is required")
        return self._watch(
            self.job_key(job_id),
            lambda: self.client.get_job(job_id),
            self.policies.job,
            listener,
        )

    def watch_queue(self, listener: Listener) -> Subscription:
        return self._watch(QUEUE_KEY, self.client.get_queue, self.policies.queue, listener)

    def watch_status_counts(
        self,
        listener: Callable[[StatusCounts, Optional[BackendRequestError]], None],
    ) -> Subscription:
        """Recompute status counts on every change of the job list."""
        def deliver(snapshot: QuerySnapshot):
            listener(count_statuses(snapshot.data), snapshot.error)

        return self.watch_jobs(deliver)

    async def close(self):
        """Stop every subscription opened through this instance."""
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            await subscription.stop()

    # Mutations

    async def create_job(self, job: EncoreJobRequest) -> EncoreJob:
        created = await self.client.create_job(job)
        self.cache.invalidate(JOBS_ROOT)
        self.cache.invalidate(QUEUE_KEY)
        return created

    async def update_job(self, job_id: str, job: EncoreJobRequest) -> EncoreJob:
        updated = await self.client.update_job(job_id, job)
        self.cache.set_data(self.job_key(job_id), updated)
        self.cache.invalidate(JOBS_ROOT)
        return updated

    async def delete_job(self, job_id: str) -> None:
        await self.client.delete_job(job_id)
        self.cache.remove(self.job_key(job_id))
        self.cache.invalidate(JOBS_ROOT)

    async def cancel_job(self, job_id: str) -> str:
        confirmation = await self.client.cancel_job(job_id)
        self.cache.invalidate(self.job_key(job_id))
        self.cache.invalidate(JOBS_ROOT)
        self.cache.invalidate(QUEUE_KEY)
        return confirmation
