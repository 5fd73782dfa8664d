import heapq
import threading
import time
from typing import Callable

from rich.console import Console

from .errors import CorruptStateError
from .models import Application, ClusterObject, Endpoint, ObjectKey, Workload
from .reconciler import Reconciler
from .settings import AppSettings, get_settings
from .store import ClusterStore

console = Console()

KeyMapper = Callable[[ClusterObject], ObjectKey | None]


class WorkQueue:
    """
    De-duplicating queue of object keys.

    A key handed out by get() is not handed out again until done() is called
    for it, so at most one reconcile per key is in flight. Keys re-added while
    in flight are parked and re-queued by done().
    """

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._cond = threading.Condition()
        self._queue: list[ObjectKey] = []
        self._dirty: set[ObjectKey] = set()
        self._processing: set[ObjectKey] = set()
        self._delayed: list[tuple[float, int, ObjectKey]] = []
        self._failures: dict[ObjectKey, int] = {}
        self._seq = 0

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def add(self, key: ObjectKey):
        with self._cond:
            self._add(key)

    def _add(self, key: ObjectKey):
        if key in self._dirty:
            return
        self._dirty.add(key)
        if key not in self._processing:
            self._queue.append(key)
            self._cond.notify()

    def add_after(self, key: ObjectKey, delay: float):
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            self._seq += 1
            heapq.heappush(self._delayed, (time.monotonic() + delay, self._seq, key))
            self._cond.notify()

    def add_rate_limited(self, key: ObjectKey) -> float:
        """Re-adds `key` after an exponential backoff based on its failure count."""
        with self._cond:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        delay = min(self.base_delay * (2**failures), self.max_delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: ObjectKey):
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: ObjectKey) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def _promote_due(self) -> float | None:
        """Moves due delayed keys into the queue. Returns seconds until the next one."""
        now = time.monotonic()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, key = heapq.heappop(self._delayed)
            self._add(key)
        return self._delayed[0][0] - now if self._delayed else None

    def get(self, timeout: float | None = None) -> ObjectKey | None:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                next_due = self._promote_due()
                if self._queue:
                    key = self._queue.pop(0)
                    self._dirty.discard(key)
                    self._processing.add(key)
                    return key

                wait = next_due
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: ObjectKey):
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()


class Controller:
    """Binds a Reconciler to watches on Applications and the objects they own."""

    def __init__(self, reconciler: Reconciler, store: ClusterStore, settings: AppSettings | None = None):
        self.reconciler = reconciler
        self.store = store
        self.settings = settings or get_settings()
        self.queue = WorkQueue(self.settings.REQUEUE_BASE_DELAY, self.settings.REQUEUE_MAX_DELAY)

    def watches(self) -> list[tuple[type[ClusterObject], KeyMapper]]:
        return [
            (Application, lambda obj: obj.key),
            (Workload, self.owner_key),
            (Endpoint, self.owner_key),
        ]

    def owner_key(self, obj: ClusterObject) -> ObjectKey | None:
        ref = obj.metadata.controller_ref()
        if ref is None or ref.kind != self.settings.KIND:
            return None
        return ObjectKey(obj.metadata.namespace, ref.name)

    def handle_event(self, obj: ClusterObject, mapper: KeyMapper):
        key = mapper(obj)
        if key is not None:
            self.queue.add(key)

    def resync(self) -> int:
        apps = self.store.list(Application, self.settings.NAMESPACE)
        for app in apps:
            self.queue.add(app.key)
        return len(apps)

    def process_next(self, timeout: float | None = None) -> bool:
        """Runs one reconcile. Returns False when nothing was ready within `timeout`."""
        key = self.queue.get(timeout)
        if key is None:
            return False

        try:
            result = self.reconciler.reconcile(key)
        except CorruptStateError as e:
            self.queue.forget(key)
            console.print(f"[bold red]❌ Needs operator attention, not retrying:[/bold red] {e}")
        except Exception as e:
            delay = self.queue.add_rate_limited(key)
            console.print(
                f"[bold red]❌ Reconcile failed for {key}[/bold red] "
                f"(retry #{self.queue.num_requeues(key)} in {delay:.3f}s): {e}"
            )
        else:
            self.queue.forget(key)
            if result.requeue_after:
                self.queue.add_after(key, result.requeue_after)
            elif result.requeue:
                self.queue.add_rate_limited(key)
        finally:
            self.queue.done(key)

        return True
