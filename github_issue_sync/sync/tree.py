"""Materialized partition trees handed to the presentation layer."""

from dataclasses import dataclass, field

from ..github_client.models import Comment, Entity, ResourceKey


@dataclass
class EntityNode:
    """Root node for one issue or pull request and its comment children."""

    entity: Entity
    comments: list[Comment] = field(default_factory=list)

    @property
    def id(self) -> int:
        return self.entity.id


@dataclass
class PartitionTree:
    """Ordered root nodes of one partition with an ``id`` lookup index."""

    key: ResourceKey
    roots: list[EntityNode] = field(default_factory=list)
    index: dict[int, EntityNode] = field(default_factory=dict)
    initialized: bool = False

    def __len__(self) -> int:
        return len(self.roots)

    def get(self, entity_id: int) -> EntityNode | None:
        return self.index.get(entity_id)

    def find_number(self, number: int) -> EntityNode | None:
        for node in self.roots:
            if node.entity.number == number:
                return node
        return None

    def replace(self, nodes: list[EntityNode]) -> None:
        """Swap in a freshly built set of roots."""
        self.roots = list(nodes)
        self.index = {node.id: node for node in self.roots}
        self.initialized = True

    def remove(self, entity_id: int) -> EntityNode | None:
        node = self.index.pop(entity_id, None)
        if node is not None:
            self.roots = [n for n in self.roots if n.id != entity_id]
        return node

    def insert_head(self, node: EntityNode) -> None:
        self.remove(node.id)
        self.roots.insert(0, node)
        self.index[node.id] = node

    def clear(self) -> None:
        self.roots = []
        self.index = {}
        self.initialized = False
