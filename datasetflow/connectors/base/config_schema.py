"""Declarative connector configuration schemas.

A connector describes the configuration it accepts with a ConfigSchema so
that caller-supplied configuration can be rejected before any network call.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

FIELD_TYPES = ("string", "integer", "number", "boolean", "list", "dict")


@dataclass(frozen=True)
class ConfigField:
    """Description of one configuration field."""

    type: str = "string"
    required: bool = False
    default: Any = None
    pattern: Optional[str] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    choices: Optional[Sequence[Any]] = None
    secret: bool = False
    description: str = ""

    def check(self, name: str, value: Any) -> List[str]:
        """Return the problems with ``value`` for this field (empty if valid)."""
        if not _matches_type(self.type, value):
            return [f"'{name}' must be of type {self.type}, got {type(value).__name__}"]

        errors = []
        if self.pattern is not None and not re.fullmatch(self.pattern, value):
            errors.append(f"'{name}' does not match pattern {self.pattern}")
        if self.minimum is not None and value < self.minimum:
            errors.append(f"'{name}' must be >= {self.minimum}")
        if self.maximum is not None and value > self.maximum:
            errors.append(f"'{name}' must be <= {self.maximum}")
        if self.choices is not None and value not in self.choices:
            errors.append(f"'{name}' must be one of {list(self.choices)}")
        return errors


def _matches_type(field_type: str, value: Any) -> bool:
    # bool is an int subclass; keep it out of numeric fields
    if field_type == "string":
        return isinstance(value, str)
    if field_type == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if field_type == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if field_type == "boolean":
        return isinstance(value, bool)
    if field_type == "list":
        return isinstance(value, (list, tuple))
    if field_type == "dict":
        return isinstance(value, Mapping)
    return False


@dataclass(frozen=True)
class ConfigSchema:
    """Mapping of field name to ConfigField."""

    fields: Mapping[str, ConfigField] = field(default_factory=dict)
    allow_extra: bool = True

    def is_well_formed(self) -> bool:
        """Check that the schema itself is usable."""
        for name, field_def in self.fields.items():
            if not isinstance(name, str) or not name:
                return False
            if not isinstance(field_def, ConfigField):
                return False
            if field_def.type not in FIELD_TYPES:
                return False
            bounded = field_def.minimum is not None or field_def.maximum is not None
            if bounded and field_def.type not in ("integer", "number"):
                return False
            if field_def.pattern is not None:
                if field_def.type != "string":
                    return False
                try:
                    re.compile(field_def.pattern)
                except re.error:
                    return False
        return True

    def validate(self, config: Optional[Mapping[str, Any]]) -> List[str]:
        """Validate a configuration mapping.

        Args:
            config: Caller-supplied configuration

        Returns:
            List of human-readable problems; empty when the config is valid
        """
        if config is None:
            config = {}
        if not isinstance(config, Mapping):
            return ["configuration must be a mapping"]

        errors = []
        for name, field_def in self.fields.items():
            value = config.get(name)
            if value is None or value == "":
                if field_def.required and field_def.default is None:
                    errors.append(f"Missing required property: {name}")
                continue
            errors.extend(field_def.check(name, value))

        if not self.allow_extra:
            for name in config:
                if name not in self.fields:
                    errors.append(f"Unknown property: {name}")
        return errors

    def apply_defaults(self, config: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Return a copy of ``config`` with defaults filled in."""
        resolved = dict(config or {})
        for name, field_def in self.fields.items():
            if resolved.get(name) is None and field_def.default is not None:
                resolved[name] = field_def.default
        return resolved

    def redact(self, config: Mapping[str, Any]) -> Dict[str, Any]:
        """Return a copy of ``config`` safe for logging."""
        return {
            key: "***"
            if key in self.fields and self.fields[key].secret
            else value
            for key, value in config.items()
        }
