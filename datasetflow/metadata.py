"""Reference metadata stores and transformation-chain validation.

Dataset metadata is owned by an external service; these stores let the
engine run standalone (CLI, tests, demos) and perform the chain checks that
service must do when a dataset is created.
"""

import threading
from typing import Callable, Dict, Iterable, List, Mapping, Optional

import networkx as nx
import yaml

from datasetflow.exceptions import ConfigurationError, DatasetFlowError
from datasetflow.logging import get_logger
from datasetflow.models import Dataset, DatasetKind

logger = get_logger(__name__)

ChangeListener = Callable[[str], None]


class DatasetGraph:
    """Directed graph of parent -> child dataset edges."""

    def __init__(self, datasets: Iterable[Dataset]):
        self.graph = nx.DiGraph()
        self.datasets: Dict[str, Dataset] = {}
        for dataset in datasets:
            self.datasets[dataset.id] = dataset
            self.graph.add_node(dataset.id, kind=dataset.kind.value)
        for dataset in self.datasets.values():
            parent_id = dataset.parent_dataset_id
            if parent_id is not None and parent_id in self.datasets:
                self.graph.add_edge(parent_id, dataset.id)

    def cycles(self) -> List[List[str]]:
        return [sorted(cycle) for cycle in nx.simple_cycles(self.graph)]

    def descendants(self, dataset_id: str) -> List[str]:
        """Every dataset derived, directly or not, from ``dataset_id``."""
        if dataset_id not in self.graph:
            return []
        return sorted(nx.descendants(self.graph, dataset_id))

    def children(self, dataset_id: str) -> List[str]:
        if dataset_id not in self.graph:
            return []
        return sorted(self.graph.successors(dataset_id))


def check_chain(
    dataset_id: str, lookup: Mapping[str, Dataset], max_depth: int
) -> Optional[str]:
    """Walk a transformation chain; return the problem with it, if any."""
    seen = []
    current = lookup.get(dataset_id)
    while current is not None and current.kind is DatasetKind.TRANSFORMATION:
        if current.id in seen:
            return f"Dataset '{dataset_id}' has a cyclic transformation chain"
        seen.append(current.id)
        if len(seen) > max_depth:
            return (
                f"Dataset '{dataset_id}' has a transformation chain deeper "
                f"than {max_depth}"
            )
        if not current.parent_dataset_id:
            return f"Transformation dataset '{current.id}' has no parent"
        parent = lookup.get(current.parent_dataset_id)
        if parent is None:
            return (
                f"Dataset '{current.id}' references missing parent "
                f"'{current.parent_dataset_id}'"
            )
        current = parent
    return None


def validate_catalog(datasets: Iterable[Dataset], max_depth: int = 10) -> List[str]:
    """Report every integrity problem in a set of dataset definitions."""
    graph = DatasetGraph(datasets)
    problems = []

    cycles = graph.cycles()
    for cycle in cycles:
        problems.append(f"Cycle in transformation chain: {' -> '.join(cycle)}")
    in_cycle = {node for cycle in cycles for node in cycle}

    for dataset in graph.datasets.values():
        if dataset.is_source:
            if not dataset.connector_name:
                problems.append(f"SOURCE dataset '{dataset.id}' has no connector")
            if not dataset.base_query:
                problems.append(f"SOURCE dataset '{dataset.id}' has no base query")
            continue
        if dataset.id in in_cycle:
            continue
        problem = check_chain(dataset.id, graph.datasets, max_depth)
        if problem and problem not in problems:
            problems.append(problem)
    return problems


class InMemoryMetadataStore:
    """Thread-safe dict of datasets with creation-time chain validation."""

    def __init__(self, datasets: Iterable[Dataset] = (), max_depth: int = 10):
        self.max_depth = max_depth
        self._lock = threading.RLock()
        self._datasets: Dict[str, Dataset] = {d.id: d for d in datasets}
        self._listeners: List[ChangeListener] = []
        problems = validate_catalog(self._datasets.values(), max_depth)
        if problems:
            raise ConfigurationError("Invalid dataset catalog", errors=problems)

    def get_dataset(self, dataset_id: str) -> Optional[Dataset]:
        with self._lock:
            return self._datasets.get(dataset_id)

    def list_datasets(self) -> List[Dataset]:
        with self._lock:
            return list(self._datasets.values())

    def descendants(self, dataset_id: str) -> List[str]:
        return DatasetGraph(self.list_datasets()).descendants(dataset_id)

    def save_dataset(self, dataset: Dataset) -> None:
        """Create or replace a dataset after validating its chain.

        Raises:
            ConfigurationError: If the chain is broken, cyclic or too deep
        """
        with self._lock:
            candidate = dict(self._datasets)
            candidate[dataset.id] = dataset
            problem = check_chain(dataset.id, candidate, self.max_depth)
            if problem:
                raise ConfigurationError(problem, errors=[problem])
            self._datasets[dataset.id] = dataset
        logger.debug(f"Saved dataset '{dataset.id}'")
        self._notify(dataset.id)

    def delete_dataset(self, dataset_id: str) -> bool:
        with self._lock:
            removed = self._datasets.pop(dataset_id, None) is not None
        if removed:
            self._notify(dataset_id)
        return removed

    def add_change_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _notify(self, dataset_id: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(dataset_id)
            except DatasetFlowError as e:
                logger.warning(
                    f"Change listener failed for dataset '{dataset_id}': {e}",
                    exc_info=True,
                )


def load_catalog(path: str) -> List[Dataset]:
    """Read dataset definitions from a YAML file with a ``datasets:`` list.

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    try:
        with open(path, "r") as f:
            content = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigurationError(f"Catalog file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in catalog {path}: {e}")

    records = content.get("datasets") if isinstance(content, dict) else None
    if not isinstance(records, list):
        raise ConfigurationError(f"Catalog {path} must contain a 'datasets' list")
    return [Dataset.from_dict(record) for record in records]


class YamlMetadataStore(InMemoryMetadataStore):
    """Metadata store populated from a YAML catalog file."""

    def __init__(self, path: str, max_depth: int = 10):
        self.path = path
        super().__init__(load_catalog(path), max_depth=max_depth)
        logger.info(f"Loaded {len(self._datasets)} datasets from {path}")

    @classmethod
    def from_file(cls, path: str, max_depth: int = 10) -> "YamlMetadataStore":
        return cls(path, max_depth=max_depth)
