"""
Decision Lifecycle Services

- EntityResolver: idempotent subject entity / deal resolution
- build_snapshot: frozen context snapshot assembly
- DecisionStateMachine: review transitions out of PROPOSED
- PrecedentLinker: best-effort decision links
- DecisionService: orchestration of all of the above
"""

from .entity_resolver import EntityResolver, DealInput
from .snapshot import ContextSnapshotInput, build_snapshot, load_policy_snapshot
from .state_machine import DecisionStateMachine, REVIEW_TRANSITIONS, STATE_CONFIG
from .precedent_linker import PrecedentLinker
from .decision_service import (
    DecisionService,
    DecisionCreationResult,
    SubjectEntityInput,
    SYSTEM_ACTOR,
)

__all__ = [
    'EntityResolver',
    'DealInput',
    'ContextSnapshotInput',
    'build_snapshot',
    'load_policy_snapshot',
    'DecisionStateMachine',
    'REVIEW_TRANSITIONS',
    'STATE_CONFIG',
    'PrecedentLinker',
    'DecisionService',
    'DecisionCreationResult',
    'SubjectEntityInput',
    'SYSTEM_ACTOR',
]
