from dataclasses import dataclass
from enum import Enum

from rich.console import Console

from .errors import CorruptStateError, DecodeError, NotFoundError
from .models import Application, ApplicationSpec, Endpoint, EndpointSpec, ObjectKey, Workload
from .resources import build_endpoint, build_workload
from .retry import update_with_retry
from .settings import AppSettings, get_settings
from .snapshot import encode_spec, has_changed, load_snapshot, save_snapshot
from .store import ClusterStore

console = Console()


class Action(str, Enum):
    GONE = "gone"
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class ReconcileResult:
    action: Action
    requeue: bool = False
    requeue_after: float | None = None


class Reconciler:
    """
    Drives the Deployment and Service owned by an Application toward its spec.

    The last spec that was fully applied is kept in the Application's snapshot
    annotation. Derived objects are always written before the snapshot, so an
    interrupted update still looks "changed" on the next invocation.
    """

    def __init__(self, store: ClusterStore, settings: AppSettings | None = None):
        self.store = store
        self.settings = settings or get_settings()

    def reconcile(self, key: ObjectKey) -> ReconcileResult:
        try:
            app = self.store.get(Application, key.namespace, key.name)
        except NotFoundError:
            console.print(f"[dim]{key}: Application gone, leaving owned objects to the garbage collector.[/dim]")
            return ReconcileResult(Action.GONE)

        try:
            self.store.get(Workload, key.namespace, key.name)
        except NotFoundError:
            return self._first_create(app)

        return self._diff(app)

    def _first_create(self, app: Application) -> ReconcileResult:
        console.print(f"[bold yellow]⚠️  {app.key}: Deployment missing, provisioning...[/bold yellow]")

        self._persist_snapshot(app, app.spec)
        console.print(f"   [dim]Saved spec snapshot {encode_spec(app.spec)}[/dim]")

        self.store.create(build_workload(app, self.settings))
        console.print(f"   [dim]Created Deployment {app.key} ({app.spec.replicas} x {app.spec.image})[/dim]")

        self._sync_endpoint(app)

        console.print(f"[bold green]✅ {app.key}: Created.[/bold green]")
        return ReconcileResult(Action.CREATED)

    def _diff(self, app: Application) -> ReconcileResult:
        try:
            snapshot = load_snapshot(app, self.settings.SNAPSHOT_ANNOTATION)
        except DecodeError as e:
            console.print(f"[bold red]❌ {app.key}: Deployment exists but spec snapshot is unusable.[/bold red]")
            raise CorruptStateError(f"{app.key}: {e}") from e

        if not has_changed(app.spec, snapshot):
            self._ensure_endpoint(app)
            console.print(f"[dim green]✓ {app.key}: Stable[/dim green]")
            return ReconcileResult(Action.UNCHANGED)

        return self._apply_update(app, snapshot)

    def _apply_update(self, app: Application, snapshot: ApplicationSpec) -> ReconcileResult:
        console.print(
            f"[bold yellow]⚠️  DRIFT DETECTED:[/bold yellow] {app.key} "
            f"(Snapshot: {encode_spec(snapshot)} != Desired: {encode_spec(app.spec)})"
        )

        desired = build_workload(app, self.settings)

        def replace_workload_spec(existing: Workload):
            existing.spec.replicas = desired.spec.replicas
            existing.spec.selector = desired.spec.selector
            existing.spec.template = desired.spec.template

        update_with_retry(
            self.store, Workload, app.metadata.namespace, app.metadata.name, replace_workload_spec, self.settings
        )
        console.print(f"   [dim]Updated Deployment {app.key} ({app.spec.replicas} x {app.spec.image})[/dim]")

        self._sync_endpoint(app)

        self._persist_snapshot(app, app.spec)

        console.print(f"[bold green]✅ {app.key}: Converged.[/bold green]")
        return ReconcileResult(Action.UPDATED)

    def _persist_snapshot(self, app: Application, spec: ApplicationSpec):
        def store_snapshot(latest: Application):
            save_snapshot(latest, spec, self.settings.SNAPSHOT_ANNOTATION)

        update_with_retry(
            self.store, Application, app.metadata.namespace, app.metadata.name, store_snapshot, self.settings
        )

    def _ensure_endpoint(self, app: Application):
        """Recreates a Service lost after a partial first create; an unchanged snapshot would never repair it."""
        try:
            self.store.get(Endpoint, app.metadata.namespace, app.metadata.name)
        except NotFoundError:
            console.print(f"   [dim]Service {app.key} missing, recreating...[/dim]")
            self.store.create(build_endpoint(app, self.settings))

    def _sync_endpoint(self, app: Application):
        """Creates the Service, or replaces its spec keeping the assigned addresses."""
        desired = build_endpoint(app, self.settings)

        try:
            self.store.get(Endpoint, app.metadata.namespace, app.metadata.name)
        except NotFoundError:
            self.store.create(desired)
            console.print(f"   [dim]Created Service {app.key}[/dim]")
            return

        def replace_endpoint_spec(existing: Endpoint):
            existing.spec = _carry_forward(desired.spec, existing.spec)

        updated = update_with_retry(
            self.store, Endpoint, app.metadata.namespace, app.metadata.name, replace_endpoint_spec, self.settings
        )
        console.print(f"   [dim]Updated Service {app.key} (clusterIP {updated.spec.cluster_ip})[/dim]")


def _carry_forward(desired: EndpointSpec, existing: EndpointSpec) -> EndpointSpec:
    """Cluster-assigned fields must survive a spec replacement."""
    spec = desired.model_copy(deep=True)
    spec.cluster_ip = existing.cluster_ip
    spec.cluster_ips = existing.cluster_ips

    allocated = {p.name: p.node_port for p in existing.ports}
    for port in spec.ports:
        if port.node_port is None:
            port.node_port = allocated.get(port.name)

    return spec
