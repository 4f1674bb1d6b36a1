from typing import List

from datasetflow.exceptions import (
    DatasetNotFound,
    ParentDatasetUnresolvable,
    TransformationDepthExceeded,
)
from datasetflow.logging import get_logger
from datasetflow.models import Dataset

logger = get_logger(__name__)


class DatasetResolver:
    """Loads dataset metadata and re-checks transformation chains.

    The metadata service validates chains when datasets are created; the
    checks here guard against metadata that slipped past it.
    """

    def __init__(self, metadata_store, max_depth: int = 10):
        self.metadata_store = metadata_store
        self.max_depth = max_depth

    def resolve(self, dataset_id: str) -> Dataset:
        dataset = self.metadata_store.get_dataset(dataset_id)
        if dataset is None:
            raise DatasetNotFound(dataset_id)
        return dataset

    def resolve_parent(self, dataset: Dataset) -> Dataset:
        """Load the parent of a TRANSFORMATION dataset.

        Raises:
            ParentDatasetUnresolvable: Missing parent reference or record
        """
        parent_id = dataset.parent_dataset_id
        parent = self.metadata_store.get_dataset(parent_id) if parent_id else None
        if parent is None:
            logger.error(
                f"Data integrity problem: dataset '{dataset.id}' references "
                f"parent '{parent_id}' which cannot be resolved"
            )
            raise ParentDatasetUnresolvable(dataset.id, parent_id)
        return parent

    def resolve_chain(self, dataset_id: str) -> List[Dataset]:
        """Return the chain from ``dataset_id`` down to its SOURCE dataset.

        Raises:
            DatasetNotFound: The dataset itself does not exist
            ParentDatasetUnresolvable: A link in the chain is broken
            TransformationDepthExceeded: The chain loops or is too long
        """
        chain = [self.resolve(dataset_id)]
        seen = {dataset_id}
        while not chain[-1].is_source:
            if len(chain) > self.max_depth:
                raise TransformationDepthExceeded(dataset_id, self.max_depth)
            parent = self.resolve_parent(chain[-1])
            if parent.id in seen:
                logger.error(
                    f"Data integrity problem: cycle through dataset '{parent.id}'"
                )
                raise TransformationDepthExceeded(
                    dataset_id, self.max_depth, reason="cyclic"
                )
            seen.add(parent.id)
            chain.append(parent)
        return chain

    def chain_has_row_level_security(self, dataset_id: str) -> bool:
        return any(d.row_level_security for d in self.resolve_chain(dataset_id))
