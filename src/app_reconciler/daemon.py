import signal
import threading
import time

from rich.console import Console
from rich.panel import Panel

from .controller import Controller, KeyMapper
from .models import ClusterObject
from .reconciler import Reconciler
from .settings import AppSettings, get_settings
from .store import ClusterStore, KubernetesStore

WATCH_MAX_BACKOFF = 30.0


class ControllerDaemon:
    def __init__(self, store: ClusterStore | None = None, settings: AppSettings | None = None):
        self.console = Console()
        self.settings = settings or get_settings()
        self.store = store or KubernetesStore(self.settings)
        self.controller = Controller(Reconciler(self.store, self.settings), self.store, self.settings)
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return not self._stop.is_set()

    def start(self):
        """Starts watches and workers, then blocks running the resync loop."""
        signal.signal(signal.SIGINT, self.shutdown)
        signal.signal(signal.SIGTERM, self.shutdown)

        s = self.settings
        self.console.print(
            Panel.fit(
                "[bold green]App Reconciler[/bold green]\n"
                f"Status: [green]ONLINE[/green]\n"
                f"Resource: [blue]{s.KIND}.{s.API_GROUP}/{s.API_VERSION}[/blue]\n"
                f"Namespace: [blue]{s.NAMESPACE or 'all'}[/blue]\n"
                f"Workers: [blue]{s.WORKERS}[/blue]",
                title="System Start",
            )
        )

        for kind, mapper in self.controller.watches():
            self._spawn(f"watch-{kind.resource}", self._watch_loop, kind, mapper)
        for i in range(max(s.WORKERS, 1)):
            self._spawn(f"worker-{i}", self._worker_loop)

        self.run_resync_loop()

        for thread in self._threads:
            thread.join(timeout=1.0)
        self.console.print("[bold red]System Offline.[/bold red]")

    def _spawn(self, name: str, target, *args):
        thread = threading.Thread(target=target, args=args, name=name, daemon=True)
        thread.start()
        self._threads.append(thread)

    def run_resync_loop(self):
        """Periodically enqueues every Application, catching anything a watch missed."""
        while self.running:
            try:
                count = self.controller.resync()
                self.console.print(f"[dim]Resync: {count} application(s) queued[/dim]")
            except Exception as e:
                self.console.print(f"\n[bold red]Resync failed:[/bold red] {e}")

            self._interruptible_sleep(self.settings.RESYNC_INTERVAL)

    def _worker_loop(self):
        while self.running:
            self.controller.process_next(timeout=self.settings.CONTROL_INTERVAL)

    def _watch_loop(self, kind: type[ClusterObject], mapper: KeyMapper):
        backoff = 1.0
        while self.running:
            try:
                for _, obj in self.store.watch(kind, self.settings.NAMESPACE):
                    if not self.running:
                        return
                    self.controller.handle_event(obj, mapper)
                    backoff = 1.0
            except Exception as e:
                self.console.print(f"[bold orange1]⚠️  {kind.resource} watch interrupted:[/bold orange1] {e}")
                self._interruptible_sleep(backoff)
                backoff = min(backoff * 2, WATCH_MAX_BACKOFF)

    def _interruptible_sleep(self, duration: float):
        """Splits sleep into small chunks to allow immediate shutdown."""
        deadline = time.monotonic() + duration
        while self.running and time.monotonic() < deadline:
            time.sleep(min(self.settings.CONTROL_INTERVAL, max(deadline - time.monotonic(), 0)))

    def shutdown(self, signum=None, frame=None):
        """Graceful shutdown sequence."""
        if not self.running:
            return

        self.console.print(f"\n[bold orange1]🛑 Signal {signum} received. Shutting down gracefully...[/bold orange1]")
        self._stop.set()


if __name__ == "__main__":
    app = ControllerDaemon()
    app.start()
