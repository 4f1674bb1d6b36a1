"""Tests for effective, count and paginated query construction."""

import pytest

from datasetflow.models import FilterCondition
from datasetflow.query.sql_builder import (
    EffectiveQuery,
    ParamBinder,
    build_count_query,
    build_effective_query,
    paginate,
    strip_query,
)
from datasetflow.security import SecurityPredicate


def test_base_query_alone_is_untouched():
    query = build_effective_query("SELECT * FROM orders;")
    assert query == EffectiveQuery("SELECT * FROM orders", [])


def test_strip_query():
    assert strip_query("  SELECT 1 ;; \n") == "SELECT 1"


def test_wrap_order_security_then_filters_then_projection():
    predicate = SecurityPredicate([FilterCondition("owner", "equals", "u1")])
    query = build_effective_query(
        "SELECT * FROM orders",
        security_predicate=predicate,
        filters=[FilterCondition("status", "equals", "paid")],
        columns=["id", "total"],
    )
    assert query.sql == (
        'SELECT "id", "total" FROM ('
        "SELECT * FROM ("
        'SELECT * FROM (SELECT * FROM orders) AS rls_query WHERE "owner" = ?'
        ') AS base_query WHERE "status" = ?'
        ") AS projected_query"
    )
    assert query.params == ["u1", "paid"]


def test_filters_are_anded_with_named_params():
    query = build_effective_query(
        "SELECT * FROM t",
        filters=[
            {"column": "a", "operator": "greater_than", "value": 1},
            {"column": "b", "operator": "in", "value": ["x", "y"]},
        ],
        style="named",
    )
    assert query.sql == (
        'SELECT * FROM (SELECT * FROM t) AS base_query '
        'WHERE "a" > :p0 AND "b" IN (:p1, :p2)'
    )
    assert query.params == {"p0": 1, "p1": "x", "p2": "y"}


def test_expression_predicate_binds_placeholders():
    predicate = SecurityPredicate(
        expression="tenant = {tenant} AND owner = {caller_id}",
        expression_params={"tenant": "acme", "caller_id": "u1"},
    )
    query = build_effective_query("SELECT * FROM t", security_predicate=predicate)
    assert query.sql == (
        "SELECT * FROM (SELECT * FROM t) AS rls_query "
        "WHERE (tenant = ? AND owner = ?)"
    )
    assert query.params == ["acme", "u1"]


def test_empty_predicate_adds_no_wrapper():
    query = build_effective_query("SELECT 1", security_predicate=SecurityPredicate())
    assert query.sql == "SELECT 1"


def test_count_query_shares_params():
    effective = EffectiveQuery("SELECT * FROM t WHERE a = ?", [1])
    count = build_count_query(effective)
    assert count.sql == (
        "SELECT COUNT(*) AS total FROM (SELECT * FROM t WHERE a = ?) AS count_query"
    )
    assert count.params == [1]


@pytest.mark.parametrize(
    "limit, offset, suffix",
    [
        (None, None, ""),
        (10, None, " LIMIT 10"),
        (10, 20, " LIMIT 10 OFFSET 20"),
        (0, None, " LIMIT 0"),
        (None, 5, " OFFSET 5"),
        (5, 0, " LIMIT 5"),
    ],
)
def test_paginate(limit, offset, suffix):
    query = paginate(EffectiveQuery("SELECT 1", []), limit, offset)
    assert query.sql == "SELECT 1" + suffix


def test_unknown_param_style():
    with pytest.raises(ValueError):
        ParamBinder("pyformat")
