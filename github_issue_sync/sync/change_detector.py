"""Decides whether a freshly fetched partition differs from what is displayed."""

from dataclasses import dataclass, field

from ..github_client.models import Entity
from .tree import PartitionTree


@dataclass
class PartitionDiff:
    """Membership and watermark differences between two record sets."""

    added: list[int] = field(default_factory=list)
    removed: list[int] = field(default_factory=list)
    updated: list[int] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.updated)

    def summary(self) -> str:
        return (
            f"{len(self.added)} added, {len(self.removed)} removed, "
            f"{len(self.updated)} updated"
        )


class ChangeDetector:
    """Compares fetched records with the materialized tree by ``id``.

    Comparison uses only membership and ``updated_at``, so a reordering of
    otherwise identical records is not a change.
    """

    def should_rebuild(
        self, fetched: list[Entity], tree: PartitionTree, forced: bool = False
    ) -> bool:
        """Determine whether the tree must be rebuilt from ``fetched``.

        Args:
            fetched: Records just returned by the resource cache
            tree: Currently materialized tree (not modified)
            forced: Rebuild regardless of content

        Returns:
            True if forced, never built, the counts differ, or any record is
            new or carries a different ``updated_at``
        """
        if forced or not tree.initialized:
            return True
        if len(fetched) != len(tree):
            return True
        for entity in fetched:
            current = tree.get(entity.id)
            if current is None or current.entity.updated_at != entity.updated_at:
                return True
        return False

    def diff(self, fetched: list[Entity], tree: PartitionTree) -> PartitionDiff:
        """Itemize what changed, for logging after a rebuild decision."""
        result = PartitionDiff()
        fetched_ids = set()
        for entity in fetched:
            fetched_ids.add(entity.id)
            current = tree.get(entity.id)
            if current is None:
                result.added.append(entity.id)
            elif current.entity.updated_at != entity.updated_at:
                result.updated.append(entity.id)
        result.removed = [i for i in tree.index if i not in fetched_ids]
        return result
