"""
Account Lifecycle Module

Keeps profiles, owned business listings and identity-keyed records consistent
across account creation, profile updates, deletion and re-registration.

Components:
- EntityResolver: full / partial / none classification of an identity or email
- ProfileUpsertEngine: merge-on-write of profiles (immutable role)
- DeletionRegistry: every table referencing an identity and what deletion does to it
- AccountDeletionOrchestrator: staged, best-effort account teardown
- OwnershipReconciliationService: reattach unlinked listings on sign-in
- AccountLifecycleService: the above behind a tagged Result interface
"""

from .errors import (
    LifecycleError,
    ValidationError,
    NotFoundError,
    PersistenceError,
    SchemaMismatchError,
    ImmutableFieldConflict,
)
from .result import Result
from .registry import (
    DELETION_REGISTRY,
    DeletionRegistry,
    RegistryEntry,
    DeletionStage,
    DeletionAction,
    KeyKind,
    check_registry_complete,
)
from .resolver import EntityResolver, Resolution, ResolutionKind
from .auth_records import AuthRecordGateway
from .events import LifecycleEventDispatcher, LifecycleEvent, LifecycleAction
from .profile_upsert import ProfileUpsertEngine, ProfileFields, UpsertOutcome
from .deletion import AccountDeletionOrchestrator, DeletionReport, StepFailure
from .reconciliation import OwnershipReconciliationService
from .service import AccountLifecycleService

__all__ = [
    # Errors / results
    'LifecycleError', 'ValidationError', 'NotFoundError', 'PersistenceError',
    'SchemaMismatchError', 'ImmutableFieldConflict', 'Result',
    # Registry
    'DELETION_REGISTRY', 'DeletionRegistry', 'RegistryEntry', 'DeletionStage',
    'DeletionAction', 'KeyKind', 'check_registry_complete',
    # Components
    'EntityResolver', 'Resolution', 'ResolutionKind', 'AuthRecordGateway',
    'LifecycleEventDispatcher', 'LifecycleEvent', 'LifecycleAction',
    'ProfileUpsertEngine', 'ProfileFields', 'UpsertOutcome',
    'AccountDeletionOrchestrator', 'DeletionReport', 'StepFailure',
    'OwnershipReconciliationService', 'AccountLifecycleService',
]
