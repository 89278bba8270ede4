from __future__ import annotations

from statemachine import State, StateMachine

from sharad.models import TurnPhase


class TurnFSM(StateMachine):
    """Lifecycle of a single player turn.

    awaiting_input -> building_context -> generating_narrative -> validating_output
    -> applying_operations -> complete, with error_recovery reachable from generation
    and validation, and failed once retries are exhausted.

    The FSM only guards transitions; the orchestrator does the work.
    """

    awaiting_input = State(TurnPhase.awaiting_input.value, value=TurnPhase.awaiting_input.value, initial=True)
    building_context = State(TurnPhase.building_context.value, value=TurnPhase.building_context.value)
    generating_narrative = State(TurnPhase.generating_narrative.value, value=TurnPhase.generating_narrative.value)
    validating_output = State(TurnPhase.validating_output.value, value=TurnPhase.validating_output.value)
    applying_operations = State(TurnPhase.applying_operations.value, value=TurnPhase.applying_operations.value)
    complete = State(TurnPhase.complete.value, value=TurnPhase.complete.value, final=True)
    error_recovery = State(TurnPhase.error_recovery.value, value=TurnPhase.error_recovery.value)
    failed = State(TurnPhase.failed.value, value=TurnPhase.failed.value, final=True)

    start_turn = awaiting_input.to(building_context)
    request_generation = building_context.to(generating_narrative)
    received_output = generating_narrative.to(validating_output)
    output_valid = validating_output.to(applying_operations)
    mechanics_done = applying_operations.to(complete)

    fault = generating_narrative.to(error_recovery) | validating_output.to(error_recovery)
    retry = error_recovery.to(generating_narrative)
    abandon = error_recovery.to(failed)

    def __init__(self, phase: TurnPhase = TurnPhase.awaiting_input):
        self.history: list[TurnPhase] = [phase]
        super().__init__(start_value=phase.value)

    def after_transition(self, target: State) -> None:
        self.history.append(TurnPhase(str(target.value)))

    @property
    def phase(self) -> TurnPhase:
        return TurnPhase(str(self.current_state.value))

    @property
    def is_done(self) -> bool:
        return self.phase in (TurnPhase.complete, TurnPhase.failed)
