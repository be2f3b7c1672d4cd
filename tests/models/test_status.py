import pytest

from genflow.models.status import (
    BatchStatus,
    GenerationStatus,
    batch_sources_for,
    can_transition_batch,
    can_transition_generation,
    is_batch_terminal,
    is_generation_terminal,
    validate_batch_transition,
    validate_generation_transition,
)
from genflow.services.errors import InvalidStateTransitionError


def test_generation_lifecycle():
    assert can_transition_generation(GenerationStatus.PENDING, GenerationStatus.PROCESSING)
    assert can_transition_generation(GenerationStatus.PROCESSING, GenerationStatus.COMPLETED)
    assert can_transition_generation(GenerationStatus.PROCESSING, GenerationStatus.FAILED)
    assert not can_transition_generation(GenerationStatus.PENDING, GenerationStatus.COMPLETED)
    assert not can_transition_generation(GenerationStatus.COMPLETED, GenerationStatus.PROCESSING)


@pytest.mark.parametrize("status", [GenerationStatus.COMPLETED, GenerationStatus.FAILED])
def test_generation_terminal_states(status):
    assert is_generation_terminal(status)
    for target in GenerationStatus:
        assert not can_transition_generation(status, target)


@pytest.mark.parametrize("status", [BatchStatus.COMPLETED, BatchStatus.CANCELLED, BatchStatus.FAILED])
def test_batch_terminal_states(status):
    assert is_batch_terminal(status)
    for target in BatchStatus:
        assert not can_transition_batch(status, target)


def test_pause_and_resume():
    assert can_transition_batch(BatchStatus.PROCESSING, BatchStatus.PAUSED)
    assert can_transition_batch(BatchStatus.PAUSED, BatchStatus.PROCESSING)
    assert not is_batch_terminal(BatchStatus.PAUSED)


def test_batch_sources_for():
    assert batch_sources_for(BatchStatus.CANCELLED) == {
        BatchStatus.PENDING, BatchStatus.PROCESSING, BatchStatus.PAUSED,
    }
    assert batch_sources_for(BatchStatus.PENDING) == set()


def test_validate_accepts_plain_strings():
    validate_generation_transition("pending", "processing")
    validate_batch_transition("paused", "cancelled")


def test_validate_rejects_illegal_transition():
    with pytest.raises(InvalidStateTransitionError) as exc:
        validate_batch_transition(BatchStatus.CANCELLED, BatchStatus.PROCESSING)
    assert exc.value.current_state == "cancelled"
    assert exc.value.target_state == "processing"


def test_validate_rejects_unknown_status():
    with pytest.raises(ValueError):
        validate_generation_transition("pending", "exploded")
