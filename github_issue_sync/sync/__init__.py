"""Change detection, materialized trees, mutations and refresh orchestration."""

from .change_detector import ChangeDetector, PartitionDiff
from .locks import KeyLocks
from .mutation import MutationCoordinator, MutationResult
from .service import SyncService
from .tree import EntityNode, PartitionTree

__all__ = [
    "ChangeDetector",
    "EntityNode",
    "KeyLocks",
    "MutationCoordinator",
    "MutationResult",
    "PartitionDiff",
    "PartitionTree",
    "SyncService",
]
