"""Source to destination ID mapping."""

from enum import Enum
from typing import Dict, Optional, Tuple

from loguru import logger


class EntityKind(str, Enum):
    """Kinds of entities tracked by the mapping table."""

    USER = 'user'
    GROUP = 'group'
    NAMESPACE = 'namespace'
    PROJECT = 'project'


class MappingConflictError(Exception):
    """A source entity was mapped to two different destination entities."""

    def __init__(self, kind: EntityKind, source_id: int, existing: int, new: int):
        super().__init__(
            f'{kind.value} {source_id} is already mapped to {existing}, '
            f'refusing to remap it to {new}'
        )
        self.kind = kind
        self.source_id = source_id
        self.existing = existing
        self.new = new


class IdMappingTable:
    """Append-only table of ``(kind, source id) -> destination id``.

    Recording an identical pair twice is a no-op. Recording a different
    destination for a known source raises ``MappingConflictError``.
    """

    def __init__(self):
        self._entries: Dict[Tuple[EntityKind, int], int] = {}
        self._claimed: Dict[Tuple[EntityKind, int], int] = {}

    def get(self, kind: EntityKind, source_id: int) -> Optional[int]:
        return self._entries.get((kind, source_id))

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, kind: EntityKind, source_id: int, destination_id: int) -> None:
        """Add a mapping.

        Args:
            kind: Entity kind
            source_id: Source instance ID
            destination_id: Destination instance ID

        Raises:
            MappingConflictError: If the source is already mapped elsewhere
        """
        key = (kind, source_id)
        existing = self._entries.get(key)
        if existing is not None:
            if existing != destination_id:
                raise MappingConflictError(kind, source_id, existing, destination_id)
            return

        previous_source = self._claimed.get((kind, destination_id))
        if previous_source is not None:
            logger.warning(
                f'{kind.value} {destination_id} at destination already stands for '
                f'source {kind.value} {previous_source}; also mapping {source_id} to it'
            )
        else:
            self._claimed[(kind, destination_id)] = source_id

        self._entries[key] = destination_id

    def count(self, kind: EntityKind) -> int:
        return sum(1 for k, _ in self._entries if k == kind)

    def to_dict(self) -> Dict[str, Dict[str, int]]:
        """Serializable view grouped by kind, with string keys for JSON."""
        result: Dict[str, Dict[str, int]] = {kind.value: {} for kind in EntityKind}
        for (kind, source_id), destination_id in sorted(
            self._entries.items(), key=lambda item: (item[0][0].value, item[0][1])
        ):
            result[kind.value][str(source_id)] = destination_id
        return result
