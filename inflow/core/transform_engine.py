"""Resolves transform specs and runs value pipelines.

Resolution order for a spec string:
1. an instance registered under the exact spec name
2. a registered custom class, by exact name or by ``name:`` / ``name(``
   prefix when the class can build itself with ``from_string``
3. the built-in simple and parameterized transforms

Pipelines run left to right, each result feeding the next transform.
"""

import importlib
import logging
import re
from typing import Any, Optional

from inflow.core.transforms import (
    PARAMETERIZED_TRANSFORMS,
    SIMPLE_TRANSFORMS,
    FunctionTransform,
)

logger = logging.getLogger(__name__)

SPEC_NAME_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s*[:(]")


class UnknownTransformError(ValueError):
    """Raised when a transform spec cannot be resolved."""


def spec_name(spec: str) -> str:
    """Name part of a spec: ``truncate:10`` -> ``truncate``."""
    match = SPEC_NAME_RE.match(spec)
    return match.group(1) if match else spec


class TransformRegistry:
    """Custom transforms keyed by name: ready instances or classes."""

    def __init__(self):
        self._instances: dict[str, Any] = {}
        self._classes: dict[str, type] = {}

    def register(self, name: str, transform: Any) -> None:
        if not hasattr(transform, "apply"):
            raise TypeError(f"Transform '{name}' must define apply(value, context)")
        if isinstance(transform, type):
            self._classes[name] = transform
        else:
            self._instances[name] = transform
        logger.debug(f"Registered transform '{name}'")

    def instance(self, name: str) -> Optional[Any]:
        return self._instances.get(name)

    def transform_class(self, name: str) -> Optional[type]:
        return self._classes.get(name)

    def names(self) -> list[str]:
        return sorted(set(self._instances) | set(self._classes))

    def __contains__(self, name: str) -> bool:
        return name in self._instances or name in self._classes


def load_custom_transforms(paths: dict[str, str]) -> TransformRegistry:
    """Build a registry from ``{name: "package.module:ClassName"}`` entries."""
    registry = TransformRegistry()
    for name, path in paths.items():
        module_name, _, attr = path.partition(":")
        if not attr:
            raise ValueError(f"Invalid transform path for '{name}': {path} (expected module:Class)")
        module = importlib.import_module(module_name)
        registry.register(name, getattr(module, attr))
    return registry


class TransformEngine:
    def __init__(self, registry: Optional[TransformRegistry] = None):
        self.registry = registry or TransformRegistry()
        self.warnings: list[str] = []
        self._cache: dict[str, Any] = {}

    def resolve(self, spec: str) -> Any:
        spec = spec.strip()
        if spec in self._cache:
            return self._cache[spec]
        transform = self._resolve(spec)
        self._cache[spec] = transform
        return transform

    def _resolve(self, spec: str) -> Any:
        instance = self.registry.instance(spec)
        if instance is not None:
            return instance

        custom = self._resolve_custom(spec)
        if custom is not None:
            return custom

        if spec in SIMPLE_TRANSFORMS:
            return FunctionTransform(spec, SIMPLE_TRANSFORMS[spec])

        # Bare names (e.g. "hash", "truncate") fall back to the transform's defaults
        transform_cls = PARAMETERIZED_TRANSFORMS.get(spec_name(spec))
        if transform_cls is not None:
            return transform_cls.from_string(spec)

        raise UnknownTransformError(f"Unknown transform: {spec}")

    def _resolve_custom(self, spec: str) -> Optional[Any]:
        exact = self.registry.transform_class(spec)
        if exact is not None:
            return exact()

        name = spec_name(spec)
        if name == spec:
            return None
        transform_cls = self.registry.transform_class(name)
        if transform_cls is None:
            return None
        if hasattr(transform_cls, "from_string"):
            return transform_cls.from_string(spec)
        logger.warning(
            f"Custom transform '{name}' has no from_string(); ignoring parameters in '{spec}'"
        )
        return transform_cls()

    def apply(self, value: Any, specs: list[str], context: Optional[dict] = None) -> Any:
        """Run value through every transform spec, left to right."""
        ctx = dict(context or {})
        ctx["warnings"] = self.warnings
        for spec in specs:
            if not spec or not spec.strip():
                continue
            value = self.resolve(spec).apply(value, ctx)
        return value

    def pop_warnings(self) -> list[str]:
        warnings = list(self.warnings)
        self.warnings.clear()
        return warnings
