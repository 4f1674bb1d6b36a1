"""Tests for catalog loading, chain validation and the reference stores."""

import pytest
import yaml

from datasetflow.exceptions import ConfigurationError, DatasetFlowError
from datasetflow.metadata import (
    DatasetGraph,
    InMemoryMetadataStore,
    YamlMetadataStore,
    check_chain,
    load_catalog,
    validate_catalog,
)
from datasetflow.models import DatasetKind


@pytest.fixture
def catalog_file(tmp_path):
    path = tmp_path / "catalog.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "datasets": [
                    {
                        "id": "people",
                        "type": "source",
                        "connector": "in_memory",
                        "query_config": {"query": "SELECT * FROM people"},
                        "cache_ttl": 60,
                    },
                    {
                        "id": "adults",
                        "kind": "TRANSFORMATION",
                        "parent_dataset_id": "people",
                        "transform_config": {
                            "filters": [
                                {"column": "age", "operator": "greater_equal", "value": 18}
                            ],
                            "renamed_columns": [{"from": "name", "to": "full_name"}],
                        },
                    },
                ]
            }
        )
    )
    return str(path)


def test_load_catalog(catalog_file):
    people, adults = load_catalog(catalog_file)
    assert people.kind is DatasetKind.SOURCE
    assert people.connector_name == "in_memory"
    assert people.base_query == "SELECT * FROM people"
    assert people.cache_ttl_seconds == 60
    assert adults.kind is DatasetKind.TRANSFORMATION
    assert adults.transform_config.filters[0].value == 18
    assert adults.transform_config.renamed_columns[0].target == "full_name"


@pytest.mark.parametrize(
    "content, message",
    [
        ("datasets: [unclosed", "Invalid YAML"),
        ("other: 1", "'datasets' list"),
        ("- a\n- b", "'datasets' list"),
    ],
)
def test_load_catalog_errors(tmp_path, content, message):
    path = tmp_path / "bad.yaml"
    path.write_text(content)
    with pytest.raises(ConfigurationError, match=message):
        load_catalog(str(path))


def test_load_missing_catalog(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_catalog(str(tmp_path / "nope.yaml"))


class TestValidation:
    def test_valid_catalog(self, make_source, make_transformation):
        datasets = [make_source("s"), make_transformation("t", "s")]
        assert validate_catalog(datasets) == []

    def test_reports_every_problem(self, make_source, make_transformation):
        datasets = [
            make_source("s", base_query=""),
            make_source("s2", connector_name=""),
            make_transformation("orphan", "missing"),
            make_transformation("a", "b"),
            make_transformation("b", "a"),
        ]
        problems = validate_catalog(datasets)
        assert "SOURCE dataset 's' has no base query" in problems
        assert "SOURCE dataset 's2' has no connector" in problems
        assert "Dataset 'orphan' references missing parent 'missing'" in problems
        assert "Cycle in transformation chain: a -> b" in problems
        assert len(problems) == 4

    def test_depth(self, make_source, make_transformation):
        datasets = {
            "s": make_source("s"),
            "t1": make_transformation("t1", "s"),
            "t2": make_transformation("t2", "t1"),
        }
        assert check_chain("t2", datasets, max_depth=2) is None
        assert "deeper than 1" in check_chain("t2", datasets, max_depth=1)


def test_dataset_graph(make_source, make_transformation):
    graph = DatasetGraph(
        [
            make_source("s"),
            make_transformation("t1", "s"),
            make_transformation("t2", "t1"),
            make_transformation("u", "s"),
        ]
    )
    assert graph.descendants("s") == ["t1", "t2", "u"]
    assert graph.descendants("t2") == []
    assert graph.descendants("unknown") == []
    assert graph.children("s") == ["t1", "u"]
    assert graph.cycles() == []


class TestInMemoryMetadataStore:
    def test_invalid_catalog_is_rejected(self, make_transformation):
        with pytest.raises(ConfigurationError) as exc_info:
            InMemoryMetadataStore([make_transformation("t", "missing")])
        assert exc_info.value.errors == [
            "Dataset 't' references missing parent 'missing'"
        ]

    def test_save_validates_the_chain(self, make_source, make_transformation):
        store = InMemoryMetadataStore([make_source("s")], max_depth=1)
        store.save_dataset(make_transformation("t1", "s"))
        assert store.get_dataset("t1") is not None
        with pytest.raises(ConfigurationError, match="deeper"):
            store.save_dataset(make_transformation("t2", "t1"))
        with pytest.raises(ConfigurationError, match="missing parent"):
            store.save_dataset(make_transformation("t3", "nope"))
        assert store.get_dataset("t2") is None

    def test_listeners(self, make_source):
        store = InMemoryMetadataStore()
        changed = []
        store.add_change_listener(changed.append)

        def broken(dataset_id):
            raise DatasetFlowError("listener down")

        store.add_change_listener(broken)
        store.save_dataset(make_source("s"))
        assert store.delete_dataset("s") is True
        assert store.delete_dataset("s") is False
        assert changed == ["s", "s"]

    def test_list_and_descendants(self, make_source, make_transformation):
        store = InMemoryMetadataStore([make_source("s"), make_transformation("t", "s")])
        assert sorted(d.id for d in store.list_datasets()) == ["s", "t"]
        assert store.descendants("s") == ["t"]


def test_yaml_metadata_store(catalog_file):
    store = YamlMetadataStore.from_file(catalog_file, max_depth=3)
    assert store.path == catalog_file
    assert store.max_depth == 3
    assert store.get_dataset("adults").parent_dataset_id == "people"
