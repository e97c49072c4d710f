"""
Deletion Registry

The exhaustive table of every entity type that references an identity, how it
is keyed and what account deletion does to it. The deletion orchestrator
iterates this table and nothing else, so a table missing from here is a table
left behind after deletion. ``check_registry_complete`` enforces that against
the ``identity_ref`` tags on the models.

Stages run in order: dependents, email-keyed records, owned entities, profile.
The auth record is removed after the last stage by the orchestrator.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Tuple

from sqlalchemy import MetaData

from .errors import SchemaMismatchError


class KeyKind(str, Enum):
    BY_ID = "by_id"
    BY_EMAIL = "by_email"


class DeletionAction(str, Enum):
    HARD_DELETE = "hard_delete"
    SOFT_DELETE_OWNERSHIP = "soft_delete_ownership"


class DeletionStage(int, Enum):
    DEPENDENTS = 1
    EMAIL_RECORDS = 2
    OWNED_ENTITIES = 3
    PROFILE = 4


@dataclass(frozen=True)
class RegistryEntry:
    table: str
    column: str
    key: KeyKind
    action: DeletionAction
    stage: DeletionStage
    # Owned entities only: contact email used for partial-identity deletion
    # and ownership reconciliation.
    email_column: Optional[str] = None
    # Owned entities only: the reclaimable marker.
    unlinked_column: Optional[str] = None

    @property
    def is_owned_entity(self) -> bool:
        return self.action == DeletionAction.SOFT_DELETE_OWNERSHIP

    @property
    def columns(self) -> Tuple[str, ...]:
        cols = [self.column]
        if self.email_column:
            cols.append(self.email_column)
        if self.unlinked_column:
            cols.append(self.unlinked_column)
        if self.is_owned_entity:
            cols.append("id")
        return tuple(cols)

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "column": self.column,
            "key": self.key.value,
            "action": self.action.value,
            "stage": self.stage.name.lower(),
            "email_column": self.email_column,
        }


class DeletionRegistry:
    """Ordered, validated collection of registry entries."""

    def __init__(self, entries: List[RegistryEntry]):
        seen = set()
        for entry in entries:
            if (entry.table, entry.column) in seen:
                raise ValueError(f"Duplicate registry entry: {entry.table}.{entry.column}")
            seen.add((entry.table, entry.column))
            if entry.is_owned_entity and not (entry.email_column and entry.unlinked_column):
                raise ValueError(f"Owned entity {entry.table} needs email and unlinked columns")
            if entry.is_owned_entity and entry.key != KeyKind.BY_ID:
                raise ValueError(f"Owned entity {entry.table} must be keyed by identity id")
        # Stable sort keeps declaration order within a stage.
        self._entries = tuple(sorted(entries, key=lambda e: e.stage))

    def __iter__(self) -> Iterator[RegistryEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def tables(self) -> List[str]:
        return [entry.table for entry in self._entries]

    def by_stage(self, stage: DeletionStage) -> List[RegistryEntry]:
        return [entry for entry in self._entries if entry.stage == stage]

    def email_keyed_entries(self) -> List[RegistryEntry]:
        return [entry for entry in self._entries if entry.key == KeyKind.BY_EMAIL]

    def owned_entity_entries(self) -> List[RegistryEntry]:
        return [entry for entry in self._entries if entry.is_owned_entity]

    def covers(self, table: str, column: str, ref: str) -> bool:
        for entry in self._entries:
            if entry.table != table:
                continue
            if ref == KeyKind.BY_ID.value and entry.key == KeyKind.BY_ID and entry.column == column:
                return True
            if ref == KeyKind.BY_EMAIL.value and (
                (entry.key == KeyKind.BY_EMAIL and entry.column == column)
                or entry.email_column == column
            ):
                return True
        return False

    def to_list(self) -> List[dict]:
        return [entry.to_dict() for entry in self._entries]


def _dependent(table: str, column: str = "identity_id") -> RegistryEntry:
    return RegistryEntry(table, column, KeyKind.BY_ID, DeletionAction.HARD_DELETE, DeletionStage.DEPENDENTS)


def _email_record(table: str, column: str) -> RegistryEntry:
    return RegistryEntry(table, column, KeyKind.BY_EMAIL, DeletionAction.HARD_DELETE, DeletionStage.EMAIL_RECORDS)


DELETION_REGISTRY = DeletionRegistry([
    # Leaf records keyed by identity id
    _dependent("user_notifications"),
    _dependent("dismissed_notifications"),
    _dependent("saved_events"),
    _dependent("saved_listings"),
    _dependent("coupon_redemptions"),
    _dependent("calendar_events", "created_by_identity_id"),
    _dependent("event_flags"),
    _dependent("event_votes"),
    _dependent("email_preferences"),
    _dependent("listing_change_requests", "owner_identity_id"),
    _dependent("listing_job_posts", "owner_identity_id"),

    # Domain records keyed by email, independent of any profile
    _email_record("funnel_responses", "user_email"),
    _email_record("bookings", "user_email"),
    _email_record("booking_events", "customer_email"),
    _email_record("business_applications", "email"),

    RegistryEntry(
        "business_listings", "owner_identity_id",
        KeyKind.BY_ID, DeletionAction.SOFT_DELETE_OWNERSHIP, DeletionStage.OWNED_ENTITIES,
        email_column="email", unlinked_column="unlinked",
    ),

    RegistryEntry("profiles", "id", KeyKind.BY_ID, DeletionAction.HARD_DELETE, DeletionStage.PROFILE),
])


IDENTITY_COLUMN_SUFFIXES = ("identity_id", "email")


def find_registry_gaps(metadata: MetaData, registry: DeletionRegistry = DELETION_REGISTRY) -> List[str]:
    """
    Compare the models against the registry.

    Returns a list of human-readable problems: identity-looking columns with
    no ``identity_ref`` tag, tagged columns with no registry entry, and
    registry entries pointing at tables or columns that do not exist.
    """
    problems = []

    for table in metadata.tables.values():
        for column in table.columns:
            ref = column.info.get("identity_ref")
            if ref is None:
                if column.name.endswith(IDENTITY_COLUMN_SUFFIXES):
                    problems.append(f"{table.name}.{column.name} looks like an identity reference but is untagged")
                continue
            if ref in (KeyKind.BY_ID.value, KeyKind.BY_EMAIL.value) and not registry.covers(table.name, column.name, ref):
                problems.append(f"{table.name}.{column.name} ({ref}) has no deletion registry entry")

    for entry in registry:
        table = metadata.tables.get(entry.table)
        if table is None:
            problems.append(f"registry table {entry.table} is not a known model")
            continue
        for column in entry.columns:
            if column not in table.columns:
                problems.append(f"registry column {entry.table}.{column} is not a known column")

    return problems


def check_registry_complete(metadata: MetaData, registry: DeletionRegistry = DELETION_REGISTRY) -> None:
    problems = find_registry_gaps(metadata, registry)
    if problems:
        raise SchemaMismatchError("Deletion registry is incomplete", details={"problems": problems})
