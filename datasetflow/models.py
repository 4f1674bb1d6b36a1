"""Data model of the dataset query engine."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from datasetflow.exceptions import ValidationError


class DatasetKind(Enum):
    """How a dataset gets its rows."""

    SOURCE = "SOURCE"
    TRANSFORMATION = "TRANSFORMATION"

    @classmethod
    def parse(cls, value: Any) -> "DatasetKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValidationError(f"Unknown dataset kind: {value!r}", field="kind")


@dataclass(frozen=True)
class FilterCondition:
    """A single ``column <operator> value`` predicate."""

    column: str
    operator: str
    value: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FilterCondition":
        if not isinstance(data, Mapping):
            raise ValidationError(f"Filter must be a mapping, got {data!r}")
        return cls(
            column=data.get("column"),
            operator=data.get("operator"),
            value=data.get("value"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"column": self.column, "operator": self.operator, "value": self.value}


@dataclass(frozen=True)
class ComputedColumn:
    name: str
    expression: str
    type: str = "string"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ComputedColumn":
        return cls(
            name=data["name"],
            expression=data["expression"],
            type=data.get("type") or "string",
        )


@dataclass(frozen=True)
class ColumnRename:
    source: str
    target: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ColumnRename":
        return cls(source=data["from"], target=data["to"])


@dataclass(frozen=True)
class TransformConfig:
    """In-memory pipeline applied on top of a parent dataset's rows."""

    filters: List[FilterCondition] = field(default_factory=list)
    select_columns: Optional[List[str]] = None
    computed_columns: List[ComputedColumn] = field(default_factory=list)
    renamed_columns: List[ColumnRename] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["TransformConfig"]:
        if not data:
            return None
        try:
            return cls(
                filters=[FilterCondition.from_dict(f) for f in data.get("filters") or []],
                select_columns=list(data["select_columns"])
                if data.get("select_columns")
                else None,
                computed_columns=[
                    ComputedColumn.from_dict(c)
                    for c in data.get("computed_columns") or []
                ],
                renamed_columns=[
                    ColumnRename.from_dict(r) for r in data.get("renamed_columns") or []
                ],
            )
        except KeyError as e:
            raise ValidationError(f"Transform config is missing key {e}")


@dataclass(frozen=True)
class Dataset:
    """Metadata record describing a queryable logical table.

    SOURCE datasets carry the connector and base query; TRANSFORMATION
    datasets carry the parent reference and the transform config.
    """

    id: str
    workspace_id: str
    kind: DatasetKind
    cache_ttl_seconds: int = 0
    row_level_security: Optional[Dict[str, Any]] = None
    connector_name: Optional[str] = None
    connector_config: Dict[str, Any] = field(default_factory=dict)
    base_query: Optional[str] = None
    parent_dataset_id: Optional[str] = None
    transform_config: Optional[TransformConfig] = None
    name: Optional[str] = None

    @property
    def is_source(self) -> bool:
        return self.kind is DatasetKind.SOURCE

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Dataset":
        """Build a Dataset from a catalog or metadata-store record."""
        if "id" not in data:
            raise ValidationError("Dataset record is missing 'id'", field="id")
        kind = DatasetKind.parse(data.get("kind") or data.get("type") or "SOURCE")
        transform = data.get("transform_config", data.get("transformation_config"))
        query_config = data.get("query_config") or {}
        return cls(
            id=str(data["id"]),
            workspace_id=str(data.get("workspace_id", "")),
            kind=kind,
            cache_ttl_seconds=int(
                data.get("cache_ttl_seconds", data.get("cache_ttl", 0)) or 0
            ),
            row_level_security=data.get("row_level_security") or None,
            connector_name=data.get("connector_name") or data.get("connector"),
            connector_config=dict(
                data.get("connector_config") or data.get("connection_config") or {}
            ),
            base_query=data.get("base_query") or query_config.get("query"),
            parent_dataset_id=data.get("parent_dataset_id"),
            transform_config=TransformConfig.from_dict(transform),
            name=data.get("name"),
        )


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "type": self.type}


@dataclass
class QueryOptions:
    """Caller-supplied options for one dataset query."""

    caller_id: str
    filters: List[FilterCondition] = field(default_factory=list)
    columns: Optional[List[str]] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
    use_cache: bool = True
    timeout_seconds: Optional[float] = None

    def __post_init__(self):
        if not self.caller_id:
            raise ValidationError("caller_id is required", field="caller_id")
        for name in ("limit", "offset"):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationError(
                    f"{name} must be a non-negative integer, got {value!r}", field=name
                )
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValidationError("timeout_seconds must be positive", field="timeout")
        self.filters = [
            f if isinstance(f, FilterCondition) else FilterCondition.from_dict(f)
            for f in self.filters or []
        ]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QueryOptions":
        return cls(
            caller_id=data.get("caller_id") or data.get("user_id"),
            filters=list(data.get("filters") or []),
            columns=list(data["columns"]) if data.get("columns") else None,
            limit=data.get("limit"),
            offset=data.get("offset"),
            use_cache=data.get("use_cache", True) is not False,
            timeout_seconds=data.get("timeout_seconds"),
        )


@dataclass
class RawQueryResult:
    """What a connector returns for a single raw query."""

    columns: List[ColumnInfo]
    rows: List[Dict[str, Any]]


@dataclass
class QueryResult:
    """Uniform result handed back to the caller."""

    columns: List[ColumnInfo]
    rows: List[Dict[str, Any]]
    total_row_count: int
    execution_time: float = 0.0
    from_cache: bool = False
    query_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "columns": [c.to_dict() for c in self.columns],
            "rows": self.rows,
            "total_row_count": self.total_row_count,
            "execution_time": self.execution_time,
            "from_cache": self.from_cache,
            "query_hash": self.query_hash,
        }
