"""Construction of the effective, count and paginated queries for SOURCE datasets.

The stored base query is never edited; each concern wraps the previous query
as a subquery, in this order: row-level security, caller filters, column
projection. Values are always bound as parameters.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

from datasetflow.logging import get_logger
from datasetflow.query.filters import FilterLike, build_predicate, validate_filters

logger = get_logger(__name__)


def quote_identifier(name: str) -> str:
    """Double-quote an identifier, doubling embedded quotes."""
    return '"' + str(name).replace('"', '""') + '"'


class ParamBinder:
    """Collects bound values and hands out placeholders.

    ``qmark`` style yields ``?`` placeholders and a list of values;
    ``named`` style yields ``:p0``, ``:p1``... and a dict.
    """

    STYLES = ("qmark", "named")

    def __init__(self, style: str = "qmark"):
        if style not in self.STYLES:
            raise ValueError(f"Unknown parameter style: {style}")
        self.style = style
        self._values: List[Any] = []

    quote = staticmethod(quote_identifier)

    def bind(self, value: Any) -> str:
        self._values.append(value)
        if self.style == "qmark":
            return "?"
        return f":p{len(self._values) - 1}"

    @property
    def params(self) -> Union[List[Any], Dict[str, Any]]:
        if self.style == "qmark":
            return list(self._values)
        return {f"p{i}": v for i, v in enumerate(self._values)}


@dataclass(frozen=True)
class EffectiveQuery:
    sql: str
    params: Union[List[Any], Dict[str, Any]]


def strip_query(query: str) -> str:
    """Trim whitespace and trailing semicolons so the query can be nested."""
    query = query.strip()
    while query.endswith(";"):
        query = query[:-1].rstrip()
    return query


def build_effective_query(
    base_query: str,
    security_predicate=None,
    filters: Optional[Iterable[FilterLike]] = None,
    columns: Optional[Iterable[str]] = None,
    style: str = "qmark",
) -> EffectiveQuery:
    """Wrap the base query with security, filters and projection.

    Args:
        base_query: Dataset's stored query
        security_predicate: SecurityPredicate for the caller, or None
        filters: Caller filters, ANDed together
        columns: Optional projection list
        style: Parameter style of the target connector

    Returns:
        EffectiveQuery with SQL text and bound parameters
    """
    binder = ParamBinder(style)
    sql = strip_query(base_query)

    if security_predicate is not None:
        condition = security_predicate.render(binder)
        if condition:
            sql = f"SELECT * FROM ({sql}) AS rls_query WHERE {condition}"

    conditions = validate_filters(filters)
    if conditions:
        where = " AND ".join(build_predicate(c, binder) for c in conditions)
        sql = f"SELECT * FROM ({sql}) AS base_query WHERE {where}"

    if columns:
        projection = ", ".join(quote_identifier(c) for c in columns)
        sql = f"SELECT {projection} FROM ({sql}) AS projected_query"

    logger.debug(f"Effective query: {sql}")
    return EffectiveQuery(sql=sql, params=binder.params)


def build_count_query(query: EffectiveQuery) -> EffectiveQuery:
    return EffectiveQuery(
        sql=f"SELECT COUNT(*) AS total FROM ({query.sql}) AS count_query",
        params=query.params,
    )


def paginate(
    query: EffectiveQuery, limit: Optional[int] = None, offset: Optional[int] = None
) -> EffectiveQuery:
    """Append LIMIT / OFFSET; both are validated integers, not user text."""
    sql = query.sql
    if limit is not None:
        sql += f" LIMIT {int(limit)}"
    if offset:
        sql += f" OFFSET {int(offset)}"
    return EffectiveQuery(sql=sql, params=query.params)
