"""Time-sortable identifiers for flow runs."""

from uuid_extensions import uuid7


def generate_id(prefix: str = "") -> str:
    """Return a hyphen-free UUID v7, optionally prefixed (e.g. "run_")."""
    uid = uuid7().hex
    return f"{prefix}{uid}" if prefix else uid
