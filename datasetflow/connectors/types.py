"""Mapping of backend-native column types to the engine's neutral vocabulary."""

from typing import Any

import pyarrow as pa

STRING = "string"
INTEGER = "integer"
FLOAT = "float"
DECIMAL = "decimal"
BOOLEAN = "boolean"
DATE = "date"
TIME = "time"
TIMESTAMP = "timestamp"
BINARY = "binary"
JSON = "json"
LIST = "list"
UNKNOWN = "unknown"

NEUTRAL_TYPES = (
    STRING,
    INTEGER,
    FLOAT,
    DECIMAL,
    BOOLEAN,
    DATE,
    TIME,
    TIMESTAMP,
    BINARY,
    JSON,
    LIST,
    UNKNOWN,
)


def from_arrow_type(arrow_type: pa.DataType) -> str:
    """Map a PyArrow type to a neutral type name."""
    if pa.types.is_boolean(arrow_type):
        return BOOLEAN
    if pa.types.is_integer(arrow_type):
        return INTEGER
    if pa.types.is_floating(arrow_type):
        return FLOAT
    if pa.types.is_decimal(arrow_type):
        return DECIMAL
    if pa.types.is_string(arrow_type) or pa.types.is_large_string(arrow_type):
        return STRING
    if pa.types.is_dictionary(arrow_type):
        return from_arrow_type(arrow_type.value_type)
    if pa.types.is_date(arrow_type):
        return DATE
    if pa.types.is_time(arrow_type):
        return TIME
    if pa.types.is_timestamp(arrow_type):
        return TIMESTAMP
    if pa.types.is_binary(arrow_type) or pa.types.is_large_binary(arrow_type):
        return BINARY
    if pa.types.is_list(arrow_type) or pa.types.is_large_list(arrow_type):
        return LIST
    if pa.types.is_struct(arrow_type) or pa.types.is_map(arrow_type):
        return JSON
    return UNKNOWN


# PostgreSQL builtin type OIDs (pg_type.oid)
_POSTGRES_OIDS = {
    16: BOOLEAN,
    17: BINARY,
    18: STRING,
    19: STRING,
    20: INTEGER,
    21: INTEGER,
    23: INTEGER,
    25: STRING,
    26: INTEGER,
    114: JSON,
    700: FLOAT,
    701: FLOAT,
    1042: STRING,
    1043: STRING,
    1082: DATE,
    1083: TIME,
    1114: TIMESTAMP,
    1184: TIMESTAMP,
    1266: TIME,
    1700: DECIMAL,
    2950: STRING,
    3802: JSON,
}


def from_postgres_oid(oid: Any) -> str:
    """Map a PostgreSQL type OID (cursor.description type_code) to a neutral type."""
    try:
        return _POSTGRES_OIDS.get(int(oid), UNKNOWN)
    except (TypeError, ValueError):
        return UNKNOWN


_TYPE_NAME_PREFIXES = (
    ("bool", BOOLEAN),
    ("tinyint", INTEGER),
    ("smallint", INTEGER),
    ("bigint", INTEGER),
    ("hugeint", INTEGER),
    ("int", INTEGER),
    ("serial", INTEGER),
    ("double", FLOAT),
    ("float", FLOAT),
    ("real", FLOAT),
    ("decimal", DECIMAL),
    ("numeric", DECIMAL),
    ("varchar", STRING),
    ("char", STRING),
    ("text", STRING),
    ("string", STRING),
    ("uuid", STRING),
    ("timestamp", TIMESTAMP),
    ("datetime", TIMESTAMP),
    ("date", DATE),
    ("time", TIME),
    ("blob", BINARY),
    ("bytea", BINARY),
    ("json", JSON),
)


def from_type_name(type_name: Any) -> str:
    """Map a SQL type name (e.g. from information_schema) to a neutral type."""
    if not type_name:
        return UNKNOWN
    name = str(type_name).strip().lower()
    if name.endswith("[]"):
        return LIST
    for prefix, neutral in _TYPE_NAME_PREFIXES:
        if name.startswith(prefix):
            return neutral
    return UNKNOWN


def normalize_type_hint(type_hint: Any) -> str:
    """Normalize a user-supplied type hint, falling back to string."""
    if type_hint in NEUTRAL_TYPES:
        return type_hint
    mapped = from_type_name(type_hint)
    if mapped == UNKNOWN:
        return STRING
    return mapped
