"""Exception hierarchy for the dataset query engine.

Every failure the engine surfaces to a caller derives from DatasetFlowError,
which carries a machine-readable error code, structured context and
suggested actions so an HTTP layer can map it without string matching.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class DatasetFlowError(Exception):
    """Base exception for all datasetflow errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        suggested_actions: Optional[List[str]] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__.upper()
        self.context = context or {}
        self.suggested_actions = suggested_actions or []
        self.recoverable = recoverable
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
            "suggested_actions": self.suggested_actions,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        base_message = self.message

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_message += f" (Context: {context_str})"

        if self.suggested_actions:
            actions_str = "; ".join(self.suggested_actions)
            base_message += f" (Suggested actions: {actions_str})"

        return base_message


class ConfigurationError(DatasetFlowError):
    """Connector or engine configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        connector_name: Optional[str] = None,
    ):
        context: Dict[str, Any] = {}
        if connector_name:
            context["connector"] = connector_name
        if errors:
            context["errors"] = "; ".join(errors)
        super().__init__(
            message,
            context=context,
            suggested_actions=["Fix the configuration; retrying will not help"],
        )
        self.errors = list(errors or [])
        self.connector_name = connector_name


class DataSourceConnectionError(DatasetFlowError):
    """The backend behind a connector could not be reached."""

    def __init__(self, message: str, connector_name: Optional[str] = None):
        super().__init__(
            message,
            context={"connector": connector_name} if connector_name else None,
            suggested_actions=["Check that the data source is reachable and retry"],
            recoverable=True,
        )
        self.connector_name = connector_name


class PermissionDenied(DatasetFlowError):
    """The caller lacks read access to a dataset."""

    def __init__(self, caller_id: str, dataset_id: str):
        super().__init__(
            f"Caller '{caller_id}' is not allowed to read dataset '{dataset_id}'",
            context={"caller_id": caller_id, "dataset_id": dataset_id},
        )
        self.caller_id = caller_id
        self.dataset_id = dataset_id


class ValidationError(DatasetFlowError):
    """Query options or filters are malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, context={"field": field} if field else None)
        self.field = field


class UnsupportedOperatorError(ValidationError):
    """A filter uses an operator the engine does not know."""

    def __init__(self, operator: Any, column: Optional[str] = None):
        super().__init__(f"Unsupported filter operator: {operator!r}", field=column)
        self.operator = operator


class ExpressionError(ValidationError):
    """A computed-column expression was rejected or could not be compiled."""

    def __init__(self, message: str, expression: Optional[str] = None):
        super().__init__(message)
        if expression is not None:
            self.context["expression"] = expression
        self.expression = expression


class DatasetNotFound(DatasetFlowError):
    """No dataset with the requested id exists."""

    def __init__(self, dataset_id: str):
        super().__init__(
            f"Dataset '{dataset_id}' not found", context={"dataset_id": dataset_id}
        )
        self.dataset_id = dataset_id


class ParentDatasetUnresolvable(DatasetFlowError):
    """A transformation points at a parent that cannot be loaded."""

    def __init__(self, dataset_id: str, parent_id: Optional[str]):
        super().__init__(
            f"Transformation dataset '{dataset_id}' has an unresolvable parent "
            f"'{parent_id}'",
            context={"dataset_id": dataset_id, "parent_dataset_id": parent_id},
            suggested_actions=["Repair the dataset metadata"],
        )
        self.dataset_id = dataset_id
        self.parent_id = parent_id


class TransformationDepthExceeded(DatasetFlowError):
    """A transformation chain is deeper than allowed, or loops back on itself."""

    def __init__(self, dataset_id: str, max_depth: int, reason: str = "too deep"):
        super().__init__(
            f"Transformation chain for dataset '{dataset_id}' is {reason} "
            f"(max depth {max_depth})",
            context={"dataset_id": dataset_id, "max_depth": max_depth},
        )
        self.dataset_id = dataset_id
        self.max_depth = max_depth


class QueryTimeoutError(DatasetFlowError):
    """A connector operation did not finish within its timeout."""

    def __init__(self, message: str, timeout_seconds: Optional[float] = None):
        super().__init__(
            message,
            context={"timeout_seconds": timeout_seconds}
            if timeout_seconds is not None
            else None,
            recoverable=True,
        )
        self.timeout_seconds = timeout_seconds


class QueryCancelledError(DatasetFlowError):
    """An in-flight query was cancelled."""


class QueryExecutionError(DatasetFlowError):
    """The backend failed to run a query."""

    def __init__(
        self,
        message: str,
        connector_name: Optional[str] = None,
        query: Optional[str] = None,
    ):
        context: Dict[str, Any] = {}
        if connector_name:
            context["connector"] = connector_name
        if query:
            # Truncate long queries for readability
            context["query"] = query[:300] + "..." if len(query) > 300 else query
        super().__init__(message, context=context)
        self.connector_name = connector_name
        self.query = query
