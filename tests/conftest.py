"""Pytest configuration for datasetflow tests."""

from typing import Any, Dict, Iterator, Optional

import pandas as pd
import pytest

from datasetflow.collaborators import AllowAllPermissions, InMemoryAuditRecorder
from datasetflow.config import EngineSettings
from datasetflow.connectors.in_memory import IN_MEMORY_DATA_STORE, register_frame
from datasetflow.connectors.registry import ConnectorRegistry
from datasetflow.metadata import InMemoryMetadataStore
from datasetflow.models import Dataset, DatasetKind, TransformConfig
from datasetflow.service import QueryExecutionService


@pytest.fixture(autouse=True)
def clear_in_memory_store() -> Iterator[None]:
    """Start and finish every test with an empty in-memory data store."""
    IN_MEMORY_DATA_STORE.clear()
    yield
    IN_MEMORY_DATA_STORE.clear()


@pytest.fixture
def people_frame() -> pd.DataFrame:
    """Five people across two regions, one with no age."""
    return pd.DataFrame(
        {
            "id": [1, 2, 3, 4, 5],
            "name": ["alice", "bob", "carol", "dave", "erin"],
            "age": pd.array([34, 27, None, 45, 31], dtype="Int64"),
            "region": ["eu", "us", "eu", "us", "eu"],
            "owner": ["u1", "u2", "u1", "u2", "u1"],
        }
    )


@pytest.fixture
def people_table(people_frame) -> str:
    register_frame("people", people_frame)
    return "people"


def source_dataset(
    dataset_id: str = "people",
    base_query: str = "SELECT * FROM people",
    cache_ttl_seconds: int = 300,
    row_level_security: Optional[Dict[str, Any]] = None,
    connector_name: str = "in_memory",
    connector_config: Optional[Dict[str, Any]] = None,
) -> Dataset:
    return Dataset(
        id=dataset_id,
        workspace_id="ws1",
        kind=DatasetKind.SOURCE,
        cache_ttl_seconds=cache_ttl_seconds,
        row_level_security=row_level_security,
        connector_name=connector_name,
        connector_config=connector_config or {},
        base_query=base_query,
    )


def transformation_dataset(
    dataset_id: str,
    parent_id: str,
    transform: Optional[Dict[str, Any]] = None,
    cache_ttl_seconds: int = 300,
    row_level_security: Optional[Dict[str, Any]] = None,
) -> Dataset:
    return Dataset(
        id=dataset_id,
        workspace_id="ws1",
        kind=DatasetKind.TRANSFORMATION,
        cache_ttl_seconds=cache_ttl_seconds,
        row_level_security=row_level_security,
        parent_dataset_id=parent_id,
        transform_config=TransformConfig.from_dict(transform),
    )


@pytest.fixture
def registry() -> ConnectorRegistry:
    registry = ConnectorRegistry()
    registry.discover()
    return registry


@pytest.fixture
def audit() -> InMemoryAuditRecorder:
    return InMemoryAuditRecorder()


@pytest.fixture
def make_service(registry, audit):
    """Build a service over a list of datasets with in-memory collaborators."""

    def _make(datasets, permissions=None, settings=None, **kwargs):
        settings = settings or EngineSettings()
        store = InMemoryMetadataStore(
            datasets, max_depth=settings.max_transformation_depth
        )
        return QueryExecutionService(
            kwargs.pop("registry", registry),
            store,
            permissions or AllowAllPermissions(),
            audit=kwargs.pop("audit", audit),
            settings=settings,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_source():
    return source_dataset


@pytest.fixture
def make_transformation():
    return transformation_dataset
