"""Shared fixtures: an in-memory, versioned cluster store and test settings.

The store mimics the behaviour the reconciler relies on from the API server:
resourceVersion checks on update, server-assigned uid / clusterIP / nodePort,
and an immutable clusterIP on Services.
"""

from __future__ import annotations

import itertools
import time
import uuid
from typing import Callable, Iterator

import pytest

from app_reconciler.errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    StoreUnavailableError,
)
from app_reconciler.models import (
    Application,
    ApplicationSpec,
    ClusterObject,
    Endpoint,
)
from app_reconciler.settings import AppSettings


class InMemoryStore:
    def __init__(self):
        self.objects: dict[tuple[str, str, str], ClusterObject] = {}
        self.writes: list[tuple[str, str, str, str]] = []
        # resource -> number of updates to reject with a conflict
        self.conflicts: dict[str, int] = {}
        # (verb, resource) -> error raised on the next call
        self.failures: dict[tuple[str, str], Exception] = {}
        self._versions = itertools.count(1)
        self._ips = itertools.count(10)
        self._node_ports = itertools.count(30100)

    @staticmethod
    def _id(kind: type[ClusterObject], namespace: str, name: str) -> tuple[str, str, str]:
        return (kind.resource, namespace, name)

    def _fail(self, verb: str, kind: type[ClusterObject]):
        error = self.failures.pop((verb, kind.resource), None)
        if error is not None:
            raise error

    def get(self, kind, namespace, name):
        self._fail("get", kind)
        obj = self.objects.get(self._id(kind, namespace, name))
        if obj is None:
            raise NotFoundError(kind.resource, namespace, name)
        return obj.model_copy(deep=True)

    def create(self, obj):
        kind = type(obj)
        self._fail("create", kind)
        ident = self._id(kind, obj.metadata.namespace, obj.metadata.name)
        if ident in self.objects:
            raise AlreadyExistsError(*ident)

        stored = obj.model_copy(deep=True)
        stored.metadata.uid = stored.metadata.uid or str(uuid.uuid4())
        stored.metadata.resource_version = str(next(self._versions))
        if isinstance(stored, Endpoint):
            if stored.spec.cluster_ip is None:
                stored.spec.cluster_ip = f"10.96.0.{next(self._ips)}"
                stored.spec.cluster_ips = [stored.spec.cluster_ip]
            for port in stored.spec.ports:
                if port.node_port is None:
                    port.node_port = next(self._node_ports)

        self.objects[ident] = stored
        self.writes.append(("create", *ident))
        return stored.model_copy(deep=True)

    def update(self, obj):
        kind = type(obj)
        self._fail("update", kind)
        ident = self._id(kind, obj.metadata.namespace, obj.metadata.name)
        current = self.objects.get(ident)
        if current is None:
            raise NotFoundError(*ident)

        if self.conflicts.get(kind.resource, 0) > 0:
            self.conflicts[kind.resource] -= 1
            current.metadata.resource_version = str(next(self._versions))
            raise ConflictError(*ident, "the object has been modified")
        if obj.metadata.resource_version != current.metadata.resource_version:
            raise ConflictError(*ident, "the object has been modified")
        if isinstance(obj, Endpoint) and obj.spec.cluster_ip != current.spec.cluster_ip:
            raise StoreUnavailableError(*ident, "spec.clusterIP: field is immutable")

        stored = obj.model_copy(deep=True)
        stored.metadata.uid = current.metadata.uid
        stored.metadata.resource_version = str(next(self._versions))
        self.objects[ident] = stored
        self.writes.append(("update", *ident))
        return stored.model_copy(deep=True)

    def list(self, kind, namespace=None):
        return [
            obj.model_copy(deep=True)
            for (resource, ns, _), obj in list(self.objects.items())
            if resource == kind.resource and (namespace is None or ns == namespace)
        ]

    def watch(self, kind, namespace=None) -> Iterator:
        """Replays current objects as ADDED events, then closes like a timed-out watch."""
        for obj in self.list(kind, namespace):
            yield "ADDED", obj
        time.sleep(0.01)

    # --- helpers outside the ClusterStore protocol ---

    def edit(self, kind, namespace: str, name: str, mutate: Callable):
        """An out-of-band change, e.g. a user running kubectl edit."""
        obj = self.objects[self._id(kind, namespace, name)]
        mutate(obj)
        obj.metadata.resource_version = str(next(self._versions))

    def delete(self, kind, namespace: str, name: str):
        del self.objects[self._id(kind, namespace, name)]

    def collect_garbage(self) -> int:
        """Deletes objects whose controller owner no longer exists."""
        live_uids = {obj.metadata.uid for obj in self.objects.values()}
        orphans = [
            ident
            for ident, obj in self.objects.items()
            if (ref := obj.metadata.controller_ref()) is not None and ref.uid not in live_uids
        ]
        for ident in orphans:
            del self.objects[ident]
        return len(orphans)

    def stored(self, kind, namespace: str, name: str):
        return self.objects.get(self._id(kind, namespace, name))


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(_env_file=None, CONFLICT_RETRY_DELAY=0, REQUEUE_BASE_DELAY=0.001)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


def make_app(
    name: str = "web",
    image: str = "nginx:1.0",
    replicas: int = 2,
    namespace: str = "default",
    annotations: dict[str, str] | None = None,
    settings: AppSettings | None = None,
) -> Application:
    """Create an Application with sensible defaults for testing."""
    return Application.new(
        name,
        ApplicationSpec(image=image, replicas=replicas),
        namespace=namespace,
        settings=settings or AppSettings(_env_file=None),
        annotations=annotations,
    )


@pytest.fixture
def seed(store: InMemoryStore) -> Callable[..., Application]:
    """Stores an Application and returns the stored copy."""

    def _seed(**kwargs) -> Application:
        return store.create(make_app(**kwargs))

    return _seed
