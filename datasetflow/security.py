"""Row-level security predicates.

A dataset's ``row_level_security`` config is turned into a predicate bound to
the calling user. Three config keys are understood, and may be combined
(they are ANDed):

``user_column``
    Rows are visible when that column equals the caller id.
``conditions``
    A list of filter conditions (same shape and operators as query filters).
    String values may use ``{caller_id}`` / ``{user_id}`` or any key of the
    caller's context, e.g. ``{"column": "region", "operator": "equals",
    "value": "{region}"}``.
``expression``
    A raw SQL boolean fragment. ``{caller_id}``, ``{user_id}`` and context
    placeholders are replaced with bound parameters, never pasted as text.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from datasetflow.exceptions import ConfigurationError, ValidationError
from datasetflow.logging import get_logger
from datasetflow.models import FilterCondition
from datasetflow.query.filters import build_predicate, validate_filters

logger = get_logger(__name__)

_PLACEHOLDER = re.compile(r"\{(\w+)\}")
CallerContextProvider = Callable[[str], Mapping[str, Any]]


@dataclass(frozen=True)
class SecurityPredicate:
    """Caller-specific restriction injected into a dataset query."""

    conditions: List[FilterCondition] = field(default_factory=list)
    expression: Optional[str] = None
    expression_params: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.conditions or self.expression)

    def render(self, binder) -> str:
        """Render as a SQL condition, binding every value through ``binder``."""
        parts = [build_predicate(c, binder) for c in self.conditions]
        if self.expression:

            def bind(match: "re.Match") -> str:
                return binder.bind(self.expression_params[match.group(1)])

            parts.append(f"({_PLACEHOLDER.sub(bind, self.expression)})")
        return " AND ".join(parts)


def _substitute(value: Any, variables: Mapping[str, Any]) -> Any:
    if not isinstance(value, str):
        if isinstance(value, (list, tuple)):
            return [_substitute(v, variables) for v in value]
        return value
    whole = _PLACEHOLDER.fullmatch(value)
    if whole and whole.group(1) in variables:
        return variables[whole.group(1)]
    return _PLACEHOLDER.sub(
        lambda m: str(variables[m.group(1)]) if m.group(1) in variables else m.group(0),
        value,
    )


class DefaultRowLevelSecurity:
    """Builds SecurityPredicates from dataset RLS configs.

    Args:
        context_provider: Optional callable returning extra per-caller
            variables (tenant, region...) usable as placeholders
    """

    def __init__(self, context_provider: Optional[CallerContextProvider] = None):
        self.context_provider = context_provider

    def variables_for(self, caller_id: str) -> Dict[str, Any]:
        variables: Dict[str, Any] = {}
        if self.context_provider is not None:
            variables.update(self.context_provider(caller_id) or {})
        variables["caller_id"] = caller_id
        variables["user_id"] = caller_id
        return variables

    def build_predicate(
        self, caller_id: str, rls_config: Optional[Mapping[str, Any]]
    ) -> Optional[SecurityPredicate]:
        """Return the predicate for ``caller_id``, or None when nothing applies.

        Raises:
            ConfigurationError: If the config is malformed or an expression
                references an unknown placeholder
        """
        if not rls_config:
            return None
        if not isinstance(rls_config, Mapping):
            raise ConfigurationError(
                f"Row-level security config must be a mapping, got {rls_config!r}"
            )
        variables = self.variables_for(caller_id)

        conditions: List[FilterCondition] = []
        user_column = rls_config.get("user_column")
        if user_column:
            conditions.append(FilterCondition(user_column, "equals", caller_id))
        try:
            conditions.extend(
                validate_filters(
                    FilterCondition(
                        c.get("column"),
                        c.get("operator"),
                        _substitute(c.get("value"), variables),
                    )
                    for c in rls_config.get("conditions") or []
                )
            )
        except (AttributeError, ValidationError) as e:
            raise ConfigurationError(f"Invalid row-level security condition: {e}")

        expression = rls_config.get("expression")
        params: Dict[str, Any] = {}
        if expression:
            for name in _PLACEHOLDER.findall(expression):
                if name not in variables:
                    raise ConfigurationError(
                        f"Row-level security expression references unknown "
                        f"placeholder '{{{name}}}'"
                    )
                params[name] = variables[name]

        predicate = SecurityPredicate(conditions, expression or None, params)
        if not predicate:
            return None
        logger.debug(
            f"Row-level security for '{caller_id}': {len(conditions)} conditions"
            f"{' + expression' if expression else ''}"
        )
        return predicate
