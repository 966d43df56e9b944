"""Load and save mapping, flow and run definition files.

Mappings and flows are JSON or YAML documents; runs are stored as JSON.
Names resolve inside the configured directories, paths are used as given.
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml

from inflow.core.config import settings
from inflow.core.flow import Flow, FlowRun
from inflow.core.mapping import MappingDefinition

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".json", ".yaml", ".yml")


def safe_name(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]", "_", name)


def _read_document(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ValueError(f"Unsupported file format: {suffix or path.name}. Use .json or .yaml")

    with open(path, encoding="utf-8") as f:
        try:
            data = json.load(f) if suffix == ".json" else yaml.safe_load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ValueError(f"Invalid document in {path}: {e}")

    if not isinstance(data, dict):
        raise ValueError(f"Invalid format in {path}: expected a mapping at the top level")
    return data


def _write_document(data: dict, path: Path) -> Path:
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ValueError(f"Unsupported file format: {suffix or path.name}. Use .json or .yaml")
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        if suffix == ".json":
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)
        else:
            yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
    return path


def _resolve(name_or_path: str | Path, directory: str) -> Path:
    """Use an existing path as is, otherwise look for name.{json,yaml,yml}."""
    path = Path(name_or_path)
    if path.suffix.lower() in SUPPORTED_SUFFIXES or path.exists():
        return path
    base = settings.resolve_dir(directory)
    for suffix in SUPPORTED_SUFFIXES:
        candidate = base / f"{name_or_path}{suffix}"
        if candidate.exists():
            return candidate
    raise FileNotFoundError(f"No definition named '{name_or_path}' in {base}")


def _list(directory: str) -> list[str]:
    base = settings.resolve_dir(directory)
    if not base.exists():
        return []
    names = {p.stem for s in SUPPORTED_SUFFIXES for p in base.glob(f"*{s}") if not p.stem.startswith("_")}
    return sorted(names)


# ---------------------------------------------------------------------------
# Mappings
# ---------------------------------------------------------------------------


def load_mapping(name_or_path: str | Path) -> MappingDefinition:
    """Load a mapping definition by name (mappings dir) or file path."""
    path = _resolve(name_or_path, settings.mappings_dir)
    mapping = MappingDefinition.from_dict(_read_document(path))
    logger.info(f"Loaded mapping '{mapping.name}' from {path}")
    return mapping


def save_mapping(mapping: MappingDefinition, path: Optional[Path] = None) -> Path:
    now = datetime.now(timezone.utc).isoformat()
    data = mapping.to_dict()
    data["created_at"] = data.get("created_at") or now
    data["updated_at"] = now
    path = path or settings.resolve_dir(settings.mappings_dir) / f"{safe_name(mapping.name)}.json"
    return _write_document(data, Path(path))


def list_mappings() -> list[str]:
    return _list(settings.mappings_dir)


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------


def load_flow(name_or_path: str | Path) -> Flow:
    path = _resolve(name_or_path, settings.flows_dir)
    return Flow.from_dict(_read_document(path))


def save_flow(flow: Flow, path: Optional[Path] = None) -> Path:
    path = path or settings.resolve_dir(settings.flows_dir) / f"{safe_name(flow.name)}.json"
    return _write_document(flow.to_dict(), Path(path))


def list_flows() -> list[str]:
    return _list(settings.flows_dir)


def delete_flow(path: Path) -> bool:
    path = Path(path)
    if not path.exists():
        return False
    path.unlink()
    return True


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


def save_run(run: FlowRun, runs_dir: Optional[Path] = None) -> Path:
    directory = Path(runs_dir) if runs_dir else settings.resolve_dir(settings.runs_dir)
    return _write_document(run.to_dict(), directory / f"{run.run_id}.json")


def load_run(run_id: str, runs_dir: Optional[Path] = None) -> dict:
    directory = Path(runs_dir) if runs_dir else settings.resolve_dir(settings.runs_dir)
    return _read_document(directory / f"{safe_name(run_id)}.json")
