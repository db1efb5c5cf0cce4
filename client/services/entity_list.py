"""
EntityListReconciler - apply insert/update/remove to an id-keyed view list.

The same reconciler serves report feeds, user, notification and comment lists.
Lists are tuples; every operation returns a NEW tuple and leaves the
caller's reference untouched, so a changed identity is the re-render signal.

Invariants:
- No duplicate ids
- Insert of a present id replaces in place (same index)
- New ids prepend (newest-first)
- Update/remove of an absent id is a benign no-op
"""

import logging
from dataclasses import is_dataclass, replace
from typing import Any, Callable, Generic, Iterable, Mapping, Optional, Tuple, TypeVar, Union

logger = logging.getLogger(__name__)

E = TypeVar('E')
EntityList = Tuple[E, ...]


def default_id_of(entity: Any) -> str:
    """Dataclass snapshots expose `.id`; raw API dicts carry `_id`"""
    if isinstance(entity, Mapping):
        return str(entity.get('_id') or entity.get('id'))
    return str(entity.id)


def merge_patch(entity: E, patch: Mapping[str, Any]) -> E:
    """New snapshot with `patch` applied; `entity` itself is not modified"""
    if is_dataclass(entity):
        return replace(entity, **patch)
    if isinstance(entity, Mapping):
        return {**entity, **patch}
    raise TypeError(f"Cannot patch entity of type {type(entity).__name__}")


class EntityListReconciler(Generic[E]):
    """
    Pure list operations. O(n) per call; view lists are page-sized (20-100).
    """

    def __init__(self, id_of: Callable[[E], str] = default_id_of):
        self.id_of = id_of

    def index_of(self, entities: EntityList, entity_id: str) -> Optional[int]:
        for i, entity in enumerate(entities):
            if self.id_of(entity) == entity_id:
                return i
        return None

    def find(self, entities: EntityList, entity_id: str) -> Optional[E]:
        index = self.index_of(entities, entity_id)
        return entities[index] if index is not None else None

    def insert(self, entities: EntityList, entity: E) -> EntityList:
        """Replace in place if the id is present, else prepend"""
        index = self.index_of(entities, self.id_of(entity))
        if index is None:
            return (entity,) + tuple(entities)
        return tuple(entities[:index]) + (entity,) + tuple(entities[index + 1:])

    def update(
        self,
        entities: EntityList,
        entity_id: str,
        patch_or_replacement: Union[Mapping[str, Any], E],
    ) -> EntityList:
        """
        Replace the entity with `entity_id` by a merged or replacement snapshot.

        A Mapping is merged onto the stored snapshot; anything else replaces
        it wholesale. Absent ids are a no-op (the entity may be filtered out
        of this view).
        """
        index = self.index_of(entities, entity_id)
        if index is None:
            logger.debug(f"update: {entity_id} not in view, ignoring")
            return tuple(entities)

        current = entities[index]
        is_patch = isinstance(patch_or_replacement, Mapping) and (
            not isinstance(current, Mapping) or self._is_patch(patch_or_replacement)
        )
        if is_patch:
            updated = merge_patch(current, patch_or_replacement)
        else:
            updated = patch_or_replacement
            if self.id_of(updated) != entity_id:
                raise ValueError(
                    f"Replacement id {self.id_of(updated)} does not match {entity_id}"
                )

        return tuple(entities[:index]) + (updated,) + tuple(entities[index + 1:])

    def remove(self, entities: EntityList, entity_id: str) -> EntityList:
        """Drop the entity with `entity_id`; no-op if absent"""
        index = self.index_of(entities, entity_id)
        if index is None:
            logger.debug(f"remove: {entity_id} not in view, ignoring")
            return tuple(entities)
        return tuple(entities[:index]) + tuple(entities[index + 1:])

    def restore(self, entities: EntityList, entity: E, index: int) -> EntityList:
        """
        Put a removed entity back at `index` (clamped to the list bounds).

        Used by optimistic rollback. If the id reappeared meanwhile the
        present snapshot wins and the list is returned unchanged.
        """
        if self.index_of(entities, self.id_of(entity)) is not None:
            return tuple(entities)
        index = max(0, min(index, len(entities)))
        return tuple(entities[:index]) + (entity,) + tuple(entities[index:])

    def replace_all(self, entities: Iterable[E]) -> EntityList:
        """
        Build a list from a server page, keeping the first occurrence of
        each id (page boundaries can shift while paginating).
        """
        seen = set()
        result = []
        for entity in entities:
            entity_id = self.id_of(entity)
            if entity_id in seen:
                logger.warning(f"Duplicate id {entity_id} in server page, keeping first")
                continue
            seen.add(entity_id)
            result.append(entity)
        return tuple(result)

    @staticmethod
    def _is_patch(mapping: Mapping[str, Any]) -> bool:
        # Dict entities: a mapping without an id is a patch, one with an id
        # is a full replacement snapshot
        return '_id' not in mapping and 'id' not in mapping
