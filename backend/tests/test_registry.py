"""
Unit Tests for the Deletion Registry

Tests:
- Every identity-referencing column in the models has a registry entry
- Untagged or unregistered identity columns are detected
- Stage ordering and entry lookups

Run with: pytest tests/test_registry.py -v
"""

import pytest
from sqlalchemy import Boolean, Column, MetaData, String, Table

from database.connection import Base
from lifecycle.errors import SchemaMismatchError
from lifecycle.registry import (
    DELETION_REGISTRY,
    DeletionAction,
    DeletionRegistry,
    DeletionStage,
    KeyKind,
    RegistryEntry,
    check_registry_complete,
    find_registry_gaps,
)


def _metadata_with(*tables):
    metadata = MetaData()
    for name, columns in tables:
        Table(name, metadata, Column("id", String, primary_key=True), *columns)
    return metadata


class TestRegistryCompleteness:
    """The registry covers every tagged column in the models."""

    def test_models_have_no_gaps(self):
        assert find_registry_gaps(Base.metadata) == []

    def test_check_passes_for_models(self):
        check_registry_complete(Base.metadata)

    def test_untagged_identity_column_detected(self):
        metadata = _metadata_with(
            ("loyalty_cards", [Column("holder_identity_id", String)]),
        )
        registry = DeletionRegistry([])

        problems = find_registry_gaps(metadata, registry)

        assert len(problems) == 1
        assert "loyalty_cards.holder_identity_id" in problems[0]
        assert "untagged" in problems[0]

    def test_untagged_email_column_detected(self):
        metadata = _metadata_with(
            ("newsletter_signups", [Column("contact_email", String)]),
        )

        problems = find_registry_gaps(metadata, DeletionRegistry([]))

        assert any("newsletter_signups.contact_email" in p for p in problems)

    def test_tagged_column_without_entry_detected(self):
        metadata = _metadata_with(
            ("reviews", [Column("author_identity_id", String, info={"identity_ref": "by_id"})]),
        )

        with pytest.raises(SchemaMismatchError) as exc_info:
            check_registry_complete(metadata, DeletionRegistry([]))

        assert exc_info.value.kind == "schema_mismatch"
        assert "reviews.author_identity_id (by_id) has no deletion registry entry" in exc_info.value.details["problems"]

    def test_retained_columns_need_no_entry(self):
        metadata = _metadata_with(
            ("audit", [Column("subject_identity_id", String, info={"identity_ref": "retained"})]),
        )

        assert find_registry_gaps(metadata, DeletionRegistry([])) == []

    def test_entry_for_unknown_column_detected(self):
        metadata = _metadata_with(
            ("reviews", [Column("author_identity_id", String, info={"identity_ref": "by_id"})]),
        )
        registry = DeletionRegistry([
            RegistryEntry("reviews", "writer_id", KeyKind.BY_ID, DeletionAction.HARD_DELETE, DeletionStage.DEPENDENTS),
        ])

        problems = find_registry_gaps(metadata, registry)

        assert "registry column reviews.writer_id is not a known column" in problems

    def test_owned_entity_email_column_counts_as_covered(self):
        metadata = _metadata_with(
            ("shops", [
                Column("owner_identity_id", String, info={"identity_ref": "by_id"}),
                Column("email", String, info={"identity_ref": "by_email"}),
                Column("unlinked", Boolean),
            ]),
        )
        registry = DeletionRegistry([
            RegistryEntry(
                "shops", "owner_identity_id", KeyKind.BY_ID,
                DeletionAction.SOFT_DELETE_OWNERSHIP, DeletionStage.OWNED_ENTITIES,
                email_column="email", unlinked_column="unlinked",
            ),
        ])

        assert find_registry_gaps(metadata, registry) == []


class TestRegistryStructure:
    """Ordering and lookups on the registry itself."""

    def test_entries_are_in_stage_order(self):
        stages = [entry.stage for entry in DELETION_REGISTRY]
        assert stages == sorted(stages)

    def test_profile_is_last_stage(self):
        entries = list(DELETION_REGISTRY)
        assert entries[-1].table == "profiles"
        assert entries[-1].stage == DeletionStage.PROFILE

    def test_email_keyed_entries(self):
        tables = {entry.table: entry.column for entry in DELETION_REGISTRY.email_keyed_entries()}
        assert tables == {
            "funnel_responses": "user_email",
            "bookings": "user_email",
            "booking_events": "customer_email",
            "business_applications": "email",
        }

    def test_single_owned_entity_entry(self):
        owned = DELETION_REGISTRY.owned_entity_entries()
        assert len(owned) == 1
        assert owned[0].table == "business_listings"
        assert owned[0].action == DeletionAction.SOFT_DELETE_OWNERSHIP
        assert owned[0].columns == ("owner_identity_id", "email", "unlinked", "id")

    def test_dependents_are_hard_deleted_by_id(self):
        for entry in DELETION_REGISTRY.by_stage(DeletionStage.DEPENDENTS):
            assert entry.key == KeyKind.BY_ID
            assert entry.action == DeletionAction.HARD_DELETE

    def test_duplicate_entry_rejected(self):
        entry = RegistryEntry("a", "identity_id", KeyKind.BY_ID, DeletionAction.HARD_DELETE, DeletionStage.DEPENDENTS)
        with pytest.raises(ValueError, match="Duplicate"):
            DeletionRegistry([entry, entry])

    def test_owned_entity_requires_email_and_unlinked_columns(self):
        with pytest.raises(ValueError, match="needs email and unlinked"):
            DeletionRegistry([
                RegistryEntry(
                    "shops", "owner_identity_id", KeyKind.BY_ID,
                    DeletionAction.SOFT_DELETE_OWNERSHIP, DeletionStage.OWNED_ENTITIES,
                ),
            ])

    def test_to_list_is_serializable(self):
        listing = DELETION_REGISTRY.to_list()
        assert len(listing) == len(DELETION_REGISTRY)
        assert listing[0]["stage"] == "dependents"
        assert listing[-1] == {
            "table": "profiles",
            "column": "id",
            "key": "by_id",
            "action": "hard_delete",
            "stage": "profile",
            "email_column": None,
        }
