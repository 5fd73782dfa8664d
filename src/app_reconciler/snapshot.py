"""
Tracks the last reconciled spec inside the Application's own annotations.

Keeping the baseline on the watched object means it is versioned together
with the spec it describes; there is no separate store to fall out of sync.
"""

import json

from pydantic import ValidationError

from .errors import DecodeError
from .models import Application, ApplicationSpec
from .settings import get_settings


def encode_spec(spec: ApplicationSpec) -> str:
    """Canonical form: sorted keys, no whitespace. Round-trips through decode_spec."""
    return json.dumps(spec.model_dump(by_alias=True), sort_keys=True, separators=(",", ":"))


def decode_spec(raw: str) -> ApplicationSpec:
    try:
        return ApplicationSpec.model_validate_json(raw)
    except ValidationError as e:
        raise DecodeError(f"Malformed spec snapshot: {e.error_count()} validation error(s)") from e


def save_snapshot(app: Application, spec: ApplicationSpec | None = None, key: str | None = None) -> Application:
    """
    Stores `spec` (default: the app's current spec) under the snapshot
    annotation. Mutates and returns `app`; persisting it is up to the caller.
    """
    key = key or get_settings().SNAPSHOT_ANNOTATION
    if app.metadata.annotations is None:
        app.metadata.annotations = {}
    app.metadata.annotations[key] = encode_spec(spec if spec is not None else app.spec)
    return app


def load_snapshot(app: Application, key: str | None = None) -> ApplicationSpec:
    key = key or get_settings().SNAPSHOT_ANNOTATION
    raw = (app.metadata.annotations or {}).get(key)
    if raw is None:
        raise DecodeError(f"Annotation '{key}' is missing on {app.key}")
    return decode_spec(raw)


def has_changed(current: ApplicationSpec, snapshot: ApplicationSpec) -> bool:
    return current != snapshot
