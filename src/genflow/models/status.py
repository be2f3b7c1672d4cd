"""
Status enums and state transition validation for generation jobs.

Single generation lifecycle: PENDING → PROCESSING → COMPLETED | FAILED

Batch lifecycle: PENDING → PROCESSING → (PAUSED ↔ PROCESSING)*
                 → COMPLETED | CANCELLED | FAILED

Terminal states are immutable. Repositories only ever write a new status
through a compare-and-set on the expected current status, and every target
status is checked against the tables below first.
"""

import enum
from typing import Dict, FrozenSet

from genflow.services.errors import InvalidStateTransitionError


class GenerationStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


_GENERATION_TRANSITIONS: Dict[GenerationStatus, FrozenSet[GenerationStatus]] = {
    GenerationStatus.PENDING: frozenset({GenerationStatus.PROCESSING}),
    GenerationStatus.PROCESSING: frozenset({
        GenerationStatus.COMPLETED,
        GenerationStatus.FAILED,
    }),
    GenerationStatus.COMPLETED: frozenset(),
    GenerationStatus.FAILED: frozenset(),
}

_BATCH_TRANSITIONS: Dict[BatchStatus, FrozenSet[BatchStatus]] = {
    BatchStatus.PENDING: frozenset({
        BatchStatus.PROCESSING,
        BatchStatus.PAUSED,
        BatchStatus.CANCELLED,
        BatchStatus.FAILED,
    }),
    BatchStatus.PROCESSING: frozenset({
        BatchStatus.PAUSED,
        BatchStatus.COMPLETED,
        BatchStatus.CANCELLED,
        BatchStatus.FAILED,
    }),
    BatchStatus.PAUSED: frozenset({
        BatchStatus.PROCESSING,
        BatchStatus.COMPLETED,
        BatchStatus.CANCELLED,
        BatchStatus.FAILED,
    }),
    BatchStatus.COMPLETED: frozenset(),
    BatchStatus.CANCELLED: frozenset(),
    BatchStatus.FAILED: frozenset(),
}

# Batches that can still make (or resume) forward progress.
ACTIVE_BATCH_STATES: FrozenSet[BatchStatus] = frozenset({
    BatchStatus.PENDING,
    BatchStatus.PROCESSING,
    BatchStatus.PAUSED,
})

ACTIVE_GENERATION_STATES: FrozenSet[GenerationStatus] = frozenset({
    GenerationStatus.PENDING,
    GenerationStatus.PROCESSING,
})


def is_generation_terminal(status: GenerationStatus) -> bool:
    return not _GENERATION_TRANSITIONS[GenerationStatus(status)]


def is_batch_terminal(status: BatchStatus) -> bool:
    return not _BATCH_TRANSITIONS[BatchStatus(status)]


def can_transition_generation(current: GenerationStatus, target: GenerationStatus) -> bool:
    return GenerationStatus(target) in _GENERATION_TRANSITIONS[GenerationStatus(current)]


def can_transition_batch(current: BatchStatus, target: BatchStatus) -> bool:
    return BatchStatus(target) in _BATCH_TRANSITIONS[BatchStatus(current)]


def batch_sources_for(target: BatchStatus) -> FrozenSet[BatchStatus]:
    """All statuses from which ``target`` may legally be entered."""
    target = BatchStatus(target)
    return frozenset(
        source for source, targets in _BATCH_TRANSITIONS.items() if target in targets
    )


def validate_generation_transition(current: GenerationStatus, target: GenerationStatus) -> None:
    """
    Raises:
        ValueError: if either status is not a known generation status
        InvalidStateTransitionError: if the transition is not allowed
    """
    current = GenerationStatus(current)
    target = GenerationStatus(target)
    if not can_transition_generation(current, target):
        raise InvalidStateTransitionError("generation", current.value, target.value)


def validate_batch_transition(current: BatchStatus, target: BatchStatus) -> None:
    """
    Raises:
        ValueError: if either status is not a known batch status
        InvalidStateTransitionError: if the transition is not allowed
    """
    current = BatchStatus(current)
    target = BatchStatus(target)
    if not can_transition_batch(current, target):
        raise InvalidStateTransitionError("batch", current.value, target.value)
