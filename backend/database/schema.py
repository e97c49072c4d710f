"""
Versioned schema descriptor.

Lists every table and column the lifecycle services read or write. ``init_db``
checks the live database against it so a missing column fails at startup
instead of producing empty results at runtime.

Bump ``SCHEMA_VERSION`` whenever a column used by the lifecycle services is
added, renamed or removed.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List

from sqlalchemy import MetaData, inspect
from sqlalchemy.ext.asyncio import AsyncConnection

from lifecycle.errors import SchemaMismatchError
from lifecycle.registry import DELETION_REGISTRY, DeletionRegistry, check_registry_complete

from .connection import Base
from . import models  # noqa: F401  (registers tables on Base.metadata)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 3

PROFILE_TABLE = "profiles"
AUTH_TABLE = "auth_identities"
AUDIT_TABLE = "lifecycle_audit_log"
ARCHIVE_TABLE = "deleted_account_archive"


@dataclass(frozen=True)
class SchemaDescriptor:
    version: int
    tables: Dict[str, FrozenSet[str]] = field(default_factory=dict)

    def missing_from(self, live: Dict[str, FrozenSet[str]]) -> List[str]:
        """Return ``table`` / ``table.column`` entries absent from ``live``."""
        problems = []
        for table, columns in sorted(self.tables.items()):
            if table not in live:
                problems.append(table)
                continue
            problems.extend(f"{table}.{column}" for column in sorted(columns - live[table]))
        return problems


def _columns(metadata: MetaData, table: str) -> FrozenSet[str]:
    return frozenset(c.name for c in metadata.tables[table].columns)


def build_descriptor(
    registry: DeletionRegistry = DELETION_REGISTRY,
    metadata: MetaData = Base.metadata
) -> SchemaDescriptor:
    """Descriptor for the registry tables plus the profile/auth/audit tables."""
    tables: Dict[str, set] = {}
    for entry in registry:
        tables.setdefault(entry.table, set()).update(entry.columns)

    tables[PROFILE_TABLE] = set(_columns(metadata, PROFILE_TABLE))
    for table in (AUTH_TABLE, AUDIT_TABLE, ARCHIVE_TABLE):
        tables[table] = set(_columns(metadata, table))

    # Owned entities are read in full for archive snapshots and reconciliation.
    for entry in registry.owned_entity_entries():
        tables[entry.table].update(_columns(metadata, entry.table))

    return SchemaDescriptor(
        version=SCHEMA_VERSION,
        tables={name: frozenset(cols) for name, cols in tables.items()}
    )


def _inspect_live(sync_conn) -> Dict[str, FrozenSet[str]]:
    inspector = inspect(sync_conn)
    return {
        table: frozenset(col["name"] for col in inspector.get_columns(table))
        for table in inspector.get_table_names()
    }


async def ensure_schema(conn: AsyncConnection, descriptor: SchemaDescriptor = None) -> SchemaDescriptor:
    """
    Validate the registry against the models and the live database against the
    descriptor.

    Raises:
        SchemaMismatchError: if anything is missing
    """
    check_registry_complete(Base.metadata)

    descriptor = descriptor or build_descriptor()
    live = await conn.run_sync(_inspect_live)
    missing = descriptor.missing_from(live)
    if missing:
        raise SchemaMismatchError(
            f"Database does not match schema v{descriptor.version}",
            details={"missing": missing}
        )

    logger.info(
        f"Schema v{descriptor.version} validated ({len(descriptor.tables)} tables)",
        extra={"schema_version": descriptor.version}
    )
    return descriptor
