import argparse
import sys
from pathlib import Path

import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.syntax import Syntax

from .errors import ReconcilerError
from .models import Application, ObjectKey
from .resources import build_endpoint, build_workload
from .settings import get_settings

console = Console()


def load_application(path: Path) -> Application:
    """Loads and validates an Application manifest from disk."""
    with open(path) as f:
        raw = yaml.safe_load(f)
    return Application.model_validate(raw or {})


def cmd_run(args: argparse.Namespace) -> int:
    from .daemon import ControllerDaemon

    ControllerDaemon().start()
    return 0


def cmd_reconcile(args: argparse.Namespace) -> int:
    from .reconciler import Reconciler
    from .store import KubernetesStore

    settings = get_settings()
    key = ObjectKey.parse(args.key)
    reconciler = Reconciler(KubernetesStore(settings), settings)

    try:
        result = reconciler.reconcile(key)
    except ReconcilerError as e:
        console.print(f"[bold red]❌ {type(e).__name__}:[/bold red] {e}")
        return 1

    console.print(f"{key}: [bold]{result.action.value}[/bold]")
    return 0


def cmd_render(args: argparse.Namespace) -> int:
    if not args.file.exists():
        console.print(f"[bold red]Fatal: {args.file} not found.[/]")
        return 1

    try:
        app = load_application(args.file)
    except (yaml.YAMLError, ValidationError) as e:
        console.print(f"[bold red]Invalid manifest {args.file}:[/bold red] {e}")
        return 1

    settings = get_settings()
    manifests = [build_workload(app, settings).to_manifest(), build_endpoint(app, settings).to_manifest()]
    rendered = yaml.safe_dump_all(manifests, sort_keys=False)
    if console.is_terminal:
        console.print(Syntax(rendered, "yaml", theme="ansi_dark"))
    else:
        # Plain output so it can be piped into kubectl apply -f -
        sys.stdout.write(rendered)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="app-reconciler",
        description="Keeps a Deployment and a NodePort Service in step with each Application resource.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Start the controller daemon")
    run.set_defaults(func=cmd_run)

    once = sub.add_parser("reconcile", help="Reconcile a single Application once")
    once.add_argument("key", help="namespace/name of the Application")
    once.set_defaults(func=cmd_reconcile)

    render = sub.add_parser("render", help="Print the objects an Application manifest would produce")
    render.add_argument("-f", "--file", type=Path, required=True, help="Application manifest (YAML)")
    render.set_defaults(func=cmd_render)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
