"""Tests for dataset resolution and chain checks."""

import pytest

from datasetflow.exceptions import (
    DatasetNotFound,
    ParentDatasetUnresolvable,
    TransformationDepthExceeded,
)
from datasetflow.query.resolver import DatasetResolver


class DictStore:
    """Metadata store that skips the validation real stores perform."""

    def __init__(self, datasets):
        self.datasets = {d.id: d for d in datasets}

    def get_dataset(self, dataset_id):
        return self.datasets.get(dataset_id)


@pytest.fixture
def chain(make_source, make_transformation):
    return [
        make_source("src"),
        make_transformation("t1", "src"),
        make_transformation("t2", "t1", row_level_security={"user_column": "owner"}),
        make_transformation("t3", "t2"),
    ]


def test_resolve_unknown_dataset():
    resolver = DatasetResolver(DictStore([]))
    with pytest.raises(DatasetNotFound) as exc_info:
        resolver.resolve("nope")
    assert exc_info.value.dataset_id == "nope"


def test_resolve_chain_to_source(chain):
    resolver = DatasetResolver(DictStore(chain))
    assert [d.id for d in resolver.resolve_chain("t3")] == ["t3", "t2", "t1", "src"]
    assert [d.id for d in resolver.resolve_chain("src")] == ["src"]


def test_chain_at_max_depth_is_allowed(chain):
    resolver = DatasetResolver(DictStore(chain), max_depth=3)
    assert len(resolver.resolve_chain("t3")) == 4


def test_chain_beyond_max_depth(chain):
    resolver = DatasetResolver(DictStore(chain), max_depth=2)
    with pytest.raises(TransformationDepthExceeded) as exc_info:
        resolver.resolve_chain("t3")
    assert exc_info.value.max_depth == 2


def test_missing_parent(make_transformation):
    resolver = DatasetResolver(DictStore([make_transformation("t1", "gone")]))
    with pytest.raises(ParentDatasetUnresolvable) as exc_info:
        resolver.resolve_chain("t1")
    assert exc_info.value.parent_id == "gone"


def test_cycle_is_detected(make_transformation):
    store = DictStore([make_transformation("a", "b"), make_transformation("b", "a")])
    resolver = DatasetResolver(store, max_depth=10)
    with pytest.raises(TransformationDepthExceeded, match="cyclic"):
        resolver.resolve_chain("a")


def test_chain_has_row_level_security(chain):
    resolver = DatasetResolver(DictStore(chain))
    assert resolver.chain_has_row_level_security("t3")
    assert resolver.chain_has_row_level_security("t2")
    assert not resolver.chain_has_row_level_security("t1")
