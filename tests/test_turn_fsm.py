from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from sharad.fsm import TurnFSM
from sharad.models import TurnPhase


def test_happy_path_walks_every_phase() -> None:
    fsm = TurnFSM()
    assert fsm.phase == TurnPhase.awaiting_input

    fsm.start_turn()
    fsm.request_generation()
    fsm.received_output()
    fsm.output_valid()
    fsm.mechanics_done()

    assert fsm.phase == TurnPhase.complete
    assert fsm.is_done
    assert fsm.history == [
        TurnPhase.awaiting_input,
        TurnPhase.building_context,
        TurnPhase.generating_narrative,
        TurnPhase.validating_output,
        TurnPhase.applying_operations,
        TurnPhase.complete,
    ]


def test_error_recovery_from_generation_and_validation() -> None:
    fsm = TurnFSM()
    fsm.start_turn()
    fsm.request_generation()
    fsm.fault()
    assert fsm.phase == TurnPhase.error_recovery

    fsm.retry()
    fsm.received_output()
    fsm.fault()
    assert fsm.phase == TurnPhase.error_recovery

    fsm.abandon()
    assert fsm.phase == TurnPhase.failed
    assert fsm.is_done


def test_cannot_apply_operations_before_validation() -> None:
    fsm = TurnFSM()
    fsm.start_turn()
    with pytest.raises(TransitionNotAllowed):
        fsm.output_valid()


def test_no_error_recovery_from_applying_operations() -> None:
    fsm = TurnFSM(TurnPhase.applying_operations)
    with pytest.raises(TransitionNotAllowed):
        fsm.fault()
