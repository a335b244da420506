"""
Grouping configuration reconciliation.

The remote side keeps one grouping document per item type:

    {
        "categories": [{"id": ..., "name": ..., "driveId": ...}, ...],
        "schools": [...],
        "instructors": [...],
        "showEmpty": false,
        "showCount": true
    }

paired with a ``modifiedTime`` supplied by the transport. Applying a
document makes the local categories, schools and instructors match it
(remote ids are kept as local ids) and stores the list order and display
toggles in the sync settings partition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..exceptions import SyncError
from ..id_utils import EPOCH_ISO
from ..models import GroupingCollection, GroupingEntity, GroupingPatch, ItemType
from ..settings.types import GROUPING_FIELDS, GroupingConfiguration

if TYPE_CHECKING:
    from ..settings.engine import SettingsEngine
    from ..store.local import LocalStore

logger = logging.getLogger(__name__)


@dataclass
class RemoteGroupingItem:
    id: str
    name: str
    drive_id: str | None = None


@dataclass
class RemoteGroupingConfig:
    """Parsed remote grouping document; parsing never fails."""

    categories: list[RemoteGroupingItem] = field(default_factory=list)
    schools: list[RemoteGroupingItem] = field(default_factory=list)
    instructors: list[RemoteGroupingItem] = field(default_factory=list)
    show_empty: bool = False
    show_count: bool = False

    @classmethod
    def parse(cls, content: Any) -> RemoteGroupingConfig:
        if not isinstance(content, dict):
            logger.warning(f"Remote grouping document is not an object: {type(content).__name__}")
            content = {}
        return cls(
            categories=_parse_items(content.get("categories"), "categories"),
            schools=_parse_items(content.get("schools"), "schools"),
            instructors=_parse_items(content.get("instructors"), "instructors"),
            show_empty=content.get("showEmpty") is True,
            show_count=content.get("showCount") is True,
        )


def _parse_items(raw: Any, kind: str) -> list[RemoteGroupingItem]:
    if not isinstance(raw, list):
        return []
    items: list[RemoteGroupingItem] = []
    seen: set[str] = set()
    for entry in raw:
        if not isinstance(entry, dict):
            logger.warning(f"Skipping malformed remote {kind} entry: {entry!r}")
            continue
        item_id = entry.get("id")
        if not isinstance(item_id, str) or not item_id:
            logger.warning(f"Skipping remote {kind} entry without id: {entry!r}")
            continue
        if item_id in seen:
            logger.warning(f"Skipping duplicate remote {kind} entry {item_id}")
            continue
        seen.add(item_id)
        name = entry.get("name")
        drive_id = entry.get("driveId")
        items.append(
            RemoteGroupingItem(
                id=item_id,
                name=name if isinstance(name, str) else "",
                drive_id=drive_id if isinstance(drive_id, str) and drive_id else None,
            )
        )
    return items


@dataclass
class ReconcileResult:
    """Counts of local changes made by one reconciliation."""

    created: int = 0
    updated: int = 0
    deleted: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.deleted)

    def __iadd__(self, other: ReconcileResult) -> ReconcileResult:
        self.created += other.created
        self.updated += other.updated
        self.deleted += other.deleted
        return self


@dataclass
class GroupingUpload:
    """Document and timestamp handed to the remote transport."""

    content: dict[str, Any]
    modified_time: str


def _ordered(entities: list[GroupingEntity], order: list[str]) -> list[GroupingEntity]:
    """Sort by *order*; entities missing from it follow in their stored order."""
    index = {entity_id: i for i, entity_id in enumerate(order)}
    positioned = sorted(
        enumerate(entities),
        key=lambda pair: (0, index[pair[1].id]) if pair[1].id in index else (1, pair[0]),
    )
    return [entity for _, entity in positioned]


def _to_remote(entity: GroupingEntity) -> dict[str, Any]:
    item: dict[str, Any] = {"id": entity.id, "name": entity.name}
    if entity.drive_id:
        item["driveId"] = entity.drive_id
    return item


class GroupingReconciler:
    """Applies remote grouping documents and builds documents for upload."""

    def __init__(self, store: LocalStore, settings: SettingsEngine):
        self.store = store
        self.settings = settings

    async def _reconcile_kind(
        self,
        collection: GroupingCollection,
        remote_items: list[RemoteGroupingItem],
        modified_time: str,
    ) -> ReconcileResult:
        result = ReconcileResult()
        local = {entity.id: entity for entity in await self.store.get_groupings(collection)}

        for item in remote_items:
            existing = local.get(item.id)
            if existing is None:
                await self.store.add_grouping(
                    collection,
                    item.name,
                    entity_id=item.id,
                    drive_id=item.drive_id,
                    modified_time=modified_time,
                )
                result.created += 1
            elif existing.name != item.name or existing.drive_id != item.drive_id:
                await self.store.update_grouping(
                    collection,
                    item.id,
                    GroupingPatch(name=item.name, drive_id=item.drive_id),
                    modified_time=modified_time,
                )
                result.updated += 1

        remote_ids = {item.id for item in remote_items}
        for entity_id in local:
            if entity_id not in remote_ids:
                # Already gone remotely, nothing to tombstone
                await self.store.delete_grouping(collection, entity_id, skip_tombstone=True)
                result.deleted += 1

        return result

    async def apply_remote_grouping_config(
        self,
        item_type: ItemType,
        content: Any,
        modified_time: str,
        *,
        authenticated: bool = True,
    ) -> ReconcileResult:
        """Make local grouping entities and order settings match a remote document.

        Args:
            item_type: Which item type the document configures
            content: Remote document; missing or malformed parts count as empty
            modified_time: Remote timestamp stored with the resulting settings
            authenticated: Caller's sign-in state

        Raises:
            SyncError: If the caller is not authenticated
        """
        if not authenticated:
            raise SyncError("Cannot reconcile grouping config while signed out", item_type.value)

        config = RemoteGroupingConfig.parse(content)
        result = ReconcileResult()
        for collection, items in (
            (GroupingCollection.categories_for(item_type), config.categories),
            (GroupingCollection.SCHOOLS, config.schools),
            (GroupingCollection.INSTRUCTORS, config.instructors),
        ):
            result += await self._reconcile_kind(collection, items, modified_time)

        grouping = GroupingConfiguration(
            category_order=[item.id for item in config.categories],
            school_order=[item.id for item in config.schools],
            instructor_order=[item.id for item in config.instructors],
            show_empty=config.show_empty,
            show_count=config.show_count,
        )
        if not await self.settings.apply_remote(
            GROUPING_FIELDS[item_type].to_patch(grouping), modified_time
        ):
            logger.warning(f"Failed to store remote {item_type.value} grouping order")

        self.store.notify_listeners()
        logger.info(
            f"Applied remote {item_type.value} grouping config: "
            f"{result.created} created, {result.updated} updated, {result.deleted} deleted"
        )
        return result

    async def get_grouping_config_for_upload(self, item_type: ItemType) -> GroupingUpload:
        """Build the grouping document for *item_type* in the stored order."""
        settings = await self.settings.load()
        config = GROUPING_FIELDS[item_type].from_settings(settings)

        categories = await self.store.get_groupings(GroupingCollection.categories_for(item_type))
        schools = await self.store.get_groupings(GroupingCollection.SCHOOLS)
        instructors = await self.store.get_groupings(GroupingCollection.INSTRUCTORS)

        content = {
            "categories": [_to_remote(e) for e in _ordered(categories, config.category_order)],
            "schools": [_to_remote(e) for e in _ordered(schools, config.school_order)],
            "instructors": [_to_remote(e) for e in _ordered(instructors, config.instructor_order)],
            "showEmpty": config.show_empty,
            "showCount": config.show_count,
        }
        return GroupingUpload(content=content, modified_time=settings.sync.modified_time or EPOCH_ISO)
