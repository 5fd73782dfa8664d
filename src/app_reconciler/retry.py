import random
import time
from typing import Callable, TypeVar

from rich.console import Console

from .errors import ConflictError, ConflictRetryExhaustedError
from .models import ClusterObject
from .settings import AppSettings, get_settings
from .store import ClusterStore

console = Console()

T = TypeVar("T", bound=ClusterObject)


def update_with_retry(
    store: ClusterStore,
    kind: type[T],
    namespace: str,
    name: str,
    mutate: Callable[[T], None],
    settings: AppSettings | None = None,
) -> T:
    """
    Applies `mutate` to the latest stored version of an object and writes it back.

    On a version conflict the object is re-read and the mutation reapplied, up
    to CONFLICT_RETRY_STEPS attempts. Any other error propagates immediately.
    """
    settings = settings or get_settings()
    steps = max(settings.CONFLICT_RETRY_STEPS, 1)
    last_error: ConflictError | None = None

    for attempt in range(steps):
        if attempt:
            _backoff(settings)

        current = store.get(kind, namespace, name)
        mutate(current)

        try:
            return store.update(current)
        except ConflictError as e:
            last_error = e
            console.print(
                f"   [dim yellow]Conflict writing {kind.resource} {namespace}/{name} "
                f"(attempt {attempt + 1}/{steps}), re-reading...[/dim yellow]"
            )

    raise ConflictRetryExhaustedError(
        kind.resource, namespace, name, f"still conflicting after {steps} attempts"
    ) from last_error


def _backoff(settings: AppSettings):
    delay = settings.CONFLICT_RETRY_DELAY
    if delay <= 0:
        return
    time.sleep(delay * (1 + random.random() * settings.CONFLICT_RETRY_JITTER))
