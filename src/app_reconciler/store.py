from dataclasses import dataclass
from typing import Any, Callable, Iterator, Protocol, TypeVar

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException
from rich.console import Console

from .errors import AlreadyExistsError, ConflictError, NotFoundError, StoreUnavailableError
from .models import Application, ClusterObject, Endpoint, Workload
from .settings import AppSettings, get_settings

console = Console()

T = TypeVar("T", bound=ClusterObject)


class ClusterStore(Protocol):
    """The slice of the cluster API the reconciler depends on."""

    def get(self, kind: type[T], namespace: str, name: str) -> T: ...

    def create(self, obj: T) -> T: ...

    def update(self, obj: T) -> T: ...

    def list(self, kind: type[T], namespace: str | None = None) -> list[T]: ...

    def watch(self, kind: type[T], namespace: str | None = None) -> Iterator[tuple[str, T]]: ...


@dataclass
class _ResourceApi:
    read: Callable[[str, str], Any]
    create: Callable[[str, dict], Any]
    replace: Callable[[str, str, dict], Any]
    list_namespaced: Callable[..., Any]
    list_all: Callable[..., Any]


class KubernetesStore:
    """ClusterStore backed by the Kubernetes API server."""

    def __init__(self, settings: AppSettings | None = None, api_client: client.ApiClient | None = None):
        self.settings = settings or get_settings()

        if api_client is None:
            _load_kube_config(self.settings)
            api_client = client.ApiClient()

        self.api_client = api_client
        self._apis = self._build_apis(
            client.CustomObjectsApi(api_client),
            client.AppsV1Api(api_client),
            client.CoreV1Api(api_client),
        )

    def _build_apis(self, custom, apps, core) -> dict[type[ClusterObject], _ResourceApi]:
        s = self.settings
        crd = (s.API_GROUP, s.API_VERSION)

        return {
            Application: _ResourceApi(
                read=lambda ns, name: custom.get_namespaced_custom_object(*crd, ns, s.PLURAL, name),
                create=lambda ns, body: custom.create_namespaced_custom_object(*crd, ns, s.PLURAL, body),
                replace=lambda ns, name, body: custom.replace_namespaced_custom_object(
                    *crd, ns, s.PLURAL, name, body
                ),
                list_namespaced=lambda ns, **kw: custom.list_namespaced_custom_object(*crd, ns, s.PLURAL, **kw),
                list_all=lambda **kw: custom.list_cluster_custom_object(*crd, s.PLURAL, **kw),
            ),
            Workload: _ResourceApi(
                read=lambda ns, name: apps.read_namespaced_deployment(name, ns),
                create=lambda ns, body: apps.create_namespaced_deployment(ns, body),
                replace=lambda ns, name, body: apps.replace_namespaced_deployment(name, ns, body),
                list_namespaced=lambda ns, **kw: apps.list_namespaced_deployment(ns, **kw),
                list_all=lambda **kw: apps.list_deployment_for_all_namespaces(**kw),
            ),
            Endpoint: _ResourceApi(
                read=lambda ns, name: core.read_namespaced_service(name, ns),
                create=lambda ns, body: core.create_namespaced_service(ns, body),
                replace=lambda ns, name, body: core.replace_namespaced_service(name, ns, body),
                list_namespaced=lambda ns, **kw: core.list_namespaced_service(ns, **kw),
                list_all=lambda **kw: core.list_service_for_all_namespaces(**kw),
            ),
        }

    def _to_object(self, kind: type[T], raw: Any) -> T:
        if not isinstance(raw, dict):
            raw = self.api_client.sanitize_for_serialization(raw)
        return kind.model_validate(raw)

    def get(self, kind: type[T], namespace: str, name: str) -> T:
        try:
            raw = self._apis[kind].read(namespace, name)
        except ApiException as e:
            raise _translate(e, kind, namespace, name) from e
        return self._to_object(kind, raw)

    def create(self, obj: T) -> T:
        kind = type(obj)
        try:
            raw = self._apis[kind].create(obj.metadata.namespace, obj.to_manifest())
        except ApiException as e:
            raise _translate(e, kind, obj.metadata.namespace, obj.metadata.name, creating=True) from e
        return self._to_object(kind, raw)

    def update(self, obj: T) -> T:
        kind = type(obj)
        try:
            raw = self._apis[kind].replace(obj.metadata.namespace, obj.metadata.name, obj.to_manifest())
        except ApiException as e:
            raise _translate(e, kind, obj.metadata.namespace, obj.metadata.name) from e
        return self._to_object(kind, raw)

    def list(self, kind: type[T], namespace: str | None = None) -> list[T]:
        api = self._apis[kind]
        try:
            raw = api.list_namespaced(namespace) if namespace else api.list_all()
        except ApiException as e:
            raise _translate(e, kind, namespace or "*", "*") from e

        if not isinstance(raw, dict):
            raw = self.api_client.sanitize_for_serialization(raw)
        return [kind.model_validate(item) for item in raw.get("items", [])]

    def watch(self, kind: type[T], namespace: str | None = None) -> Iterator[tuple[str, T]]:
        """Streams (event type, object) pairs until the server closes the watch."""
        api = self._apis[kind]
        watcher = watch.Watch()

        if namespace:
            stream = watcher.stream(api.list_namespaced, namespace)
        else:
            stream = watcher.stream(api.list_all)

        try:
            for event in stream:
                raw = event.get("raw_object") or {}
                if event.get("type") == "ERROR":
                    raise StoreUnavailableError(kind.resource, namespace or "*", "*", str(raw.get("message", raw)))
                yield event["type"], kind.model_validate(raw)
        except ApiException as e:
            raise _translate(e, kind, namespace or "*", "*") from e
        finally:
            watcher.stop()


def _load_kube_config(settings: AppSettings):
    try:
        config.load_incluster_config()
    except config.ConfigException:
        console.print("[dim]Not running in-cluster, loading local kubeconfig...[/dim]")
        config.load_kube_config(config_file=str(settings.KUBECONFIG) if settings.KUBECONFIG else None)


def _translate(e: ApiException, kind: type[ClusterObject], namespace: str, name: str, creating: bool = False):
    reason = e.reason or ""
    if e.status == 404:
        return NotFoundError(kind.resource, namespace, name, reason)
    if e.status == 409:
        if creating:
            return AlreadyExistsError(kind.resource, namespace, name, reason)
        return ConflictError(kind.resource, namespace, name, reason)
    return StoreUnavailableError(kind.resource, namespace, name, f"HTTP {e.status} {reason}".strip())
