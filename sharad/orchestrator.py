"""Turn orchestration (the Strategist).

One turn: build the context, call the narrative generator (bounded by a timeout,
retried with exponential backoff), validate its output, then apply the accepted
operations one at a time on a working copy of the game state. Image requests
start as soon as their operation is reached and are joined before the turn
completes. The working copy replaces the live state only when the turn
completes, so a failed or cancelled turn leaves no trace.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, Field

from sharad.agents.imager import ImageGenerator
from sharad.agents.narrative import NarrativeGenerator
from sharad.core.context import BaseAgentContext, RenderedContext, TurnContext, compose_turn_context
from sharad.core.events import TurnEvent
from sharad.core.messages import Message
from sharad.errors import GenerationError, MechanicsError, StateError
from sharad.fsm import TurnFSM
from sharad.models import DiceRollResult, GameState, TurnPhase
from sharad.operations import Fluff, GameResponse, OperationRejection, parse_game_response, validate_tool_calls
from sharad.sessions import GameSession
from sharad.settings import OrchestratorSettings
from sharad.tool_handler import OperationOutcome, ToolHandler

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class ImageOutcome(BaseModel):
    index: int
    character_name: str | None = None
    prompt: str
    url: str | None = None
    error: str | None = None


class TurnResult(BaseModel):
    """Everything the presentation layer needs to render a completed turn."""

    turn: int
    player_input: str
    crunch: str
    fluff: Fluff
    applied: list[OperationOutcome] = Field(default_factory=list)
    rejected: list[OperationRejection] = Field(default_factory=list)
    images: list[ImageOutcome] = Field(default_factory=list)
    dice_rolls: list[DiceRollResult] = Field(default_factory=list)
    attempts: int = 1
    phases: list[TurnPhase] = Field(default_factory=list)
    events: list[TurnEvent] = Field(default_factory=list)


class Strategist:
    def __init__(
        self,
        *,
        generator: NarrativeGenerator,
        handler: ToolHandler,
        base: BaseAgentContext,
        settings: OrchestratorSettings | None = None,
        imager: ImageGenerator | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._generator = generator
        self._handler = handler
        self._base = base
        self._settings = settings or OrchestratorSettings()
        self._imager = imager
        self._sleep = sleep

    async def run_turn(self, session: GameSession, player_input: str) -> TurnResult:
        """Run one turn; turns for the same session are serialized."""

        async with session.turn_lock:
            return await self._run_locked(session, player_input)

    async def _run_locked(self, session: GameSession, player_input: str) -> TurnResult:
        fsm = TurnFSM()
        turn_id = session.state.turn + 1
        events: list[TurnEvent] = [TurnEvent.now(type="TURN_STARTED", turn_id=turn_id, payload={"player_input": player_input})]
        logger.info("Turn %d started for session %s", turn_id, session.session_id)

        fsm.start_turn()
        ctx = TurnContext.build(
            player_input=player_input,
            recent_messages=session.log.recent(self._settings.history_window),
            summary=session.summary,
            state=session.state,
        )
        rendered = compose_turn_context(base=self._base, turn=ctx)

        fsm.request_generation()
        response, attempts = await self._generate(rendered, fsm=fsm, events=events, turn_id=turn_id)

        validated = validate_tool_calls(response.tool_calls)
        rejected: list[OperationRejection] = list(validated.rejected)
        fsm.output_valid()

        working = session.state.model_copy(deep=True)
        working.last_dice_rolls = []
        applied: list[OperationOutcome] = []
        pending_images: list[tuple[OperationOutcome, asyncio.Task[str]]] = []
        images: list[ImageOutcome] = []

        try:
            for index, op in validated.accepted:
                try:
                    outcome = self._handler.apply(working, op, index=index)
                except StateError as e:
                    rejected.append(OperationRejection(index=index, op=op.op, kind="state", message=str(e)))
                    continue
                except MechanicsError as e:
                    rejected.append(OperationRejection(index=index, op=op.op, kind="mechanics", message=str(e)))
                    continue

                applied.append(outcome)
                events.append(
                    TurnEvent.now(
                        type="OPERATION_APPLIED",
                        turn_id=turn_id,
                        payload={"index": index, "op": outcome.op, "delta": list(outcome.delta)},
                    )
                )
                if outcome.image_prompt is not None:
                    if self._imager is None:
                        images.append(
                            ImageOutcome(
                                index=index,
                                character_name=outcome.character_name,
                                prompt=outcome.image_prompt,
                                error="image generation is not configured",
                            )
                        )
                    else:
                        task = asyncio.create_task(self._generate_image(self._imager, outcome.image_prompt))
                        pending_images.append((outcome, task))

            images.extend(await self._join_images(pending_images, events=events, turn_id=turn_id))
        except BaseException:
            for _, task in pending_images:
                task.cancel()
            raise

        rejected.sort(key=lambda r: r.index)
        for rejection in rejected:
            logger.info("Turn %d rejected %s #%d (%s): %s", turn_id, rejection.op, rejection.index, rejection.kind, rejection.message)
            events.append(
                TurnEvent.now(
                    type="OPERATION_REJECTED",
                    turn_id=turn_id,
                    payload={"index": rejection.index, "op": rejection.op, "kind": rejection.kind, "message": rejection.message},
                )
            )

        fsm.mechanics_done()
        self._commit(session, working=working, turn_id=turn_id, player_input=player_input, response=response)
        events.append(
            TurnEvent.now(
                type="TURN_ENDED",
                turn_id=turn_id,
                payload={"applied": len(applied), "rejected": len(rejected), "images": len(images)},
            )
        )
        logger.info("Turn %d complete: %d applied, %d rejected", turn_id, len(applied), len(rejected))

        return TurnResult(
            turn=turn_id,
            player_input=player_input,
            crunch=response.crunch,
            fluff=response.fluff,
            applied=applied,
            rejected=rejected,
            images=sorted(images, key=lambda i: i.index),
            dice_rolls=list(working.last_dice_rolls),
            attempts=attempts,
            phases=list(fsm.history),
            events=events,
        )

    async def _generate(
        self,
        rendered: RenderedContext,
        *,
        fsm: TurnFSM,
        events: list[TurnEvent],
        turn_id: int,
    ) -> tuple[GameResponse, int]:
        attempt = 0
        while True:
            attempt += 1
            validating = False
            try:
                text = await asyncio.wait_for(
                    self._generator.generate(rendered),
                    timeout=self._settings.generation_timeout_s,
                )
                fsm.received_output()
                validating = True
                return parse_game_response(text), attempt
            except (GenerationError, TimeoutError) as e:
                reason = str(e) if isinstance(e, GenerationError) else f"timed out after {self._settings.generation_timeout_s}s"
                events.append(
                    TurnEvent.now(
                        type="GENERATION_FAILED",
                        turn_id=turn_id,
                        payload={"attempt": attempt, "phase": "validating" if validating else "generating", "reason": reason},
                    )
                )
                fsm.fault()

                if attempt >= self._settings.max_attempts:
                    fsm.abandon()
                    events.append(TurnEvent.now(type="TURN_FAILED", turn_id=turn_id, payload={"attempts": attempt}))
                    logger.error("Turn %d failed after %d attempt(s): %s", turn_id, attempt, reason)
                    raise GenerationError(f"Narrative generation failed after {attempt} attempt(s): {reason}") from e

                delay = self._settings.backoff_for(attempt)
                logger.warning("Turn %d attempt %d failed (%s); retrying in %.2fs", turn_id, attempt, reason, delay)
                await self._sleep(delay)
                fsm.retry()

    async def _generate_image(self, imager: ImageGenerator, prompt: str) -> str:
        return await asyncio.wait_for(imager.generate(prompt), timeout=self._settings.generation_timeout_s)

    async def _join_images(
        self,
        pending: list[tuple[OperationOutcome, asyncio.Task[str]]],
        *,
        events: list[TurnEvent],
        turn_id: int,
    ) -> list[ImageOutcome]:
        if not pending:
            return []

        results = await asyncio.gather(*(task for _, task in pending), return_exceptions=True)
        out: list[ImageOutcome] = []
        for (outcome, _), result in zip(pending, results):
            prompt = outcome.image_prompt or ""
            if isinstance(result, BaseException):
                reason = "timed out" if isinstance(result, TimeoutError) else str(result) or type(result).__name__
                logger.warning("Turn %d image request #%d failed: %s", turn_id, outcome.index, reason)
                events.append(
                    TurnEvent.now(type="IMAGE_FAILED", turn_id=turn_id, payload={"index": outcome.index, "reason": reason})
                )
                out.append(
                    ImageOutcome(index=outcome.index, character_name=outcome.character_name, prompt=prompt, error=reason)
                )
            else:
                out.append(
                    ImageOutcome(index=outcome.index, character_name=outcome.character_name, prompt=prompt, url=result)
                )
        return out

    def _commit(
        self,
        session: GameSession,
        *,
        working: GameState,
        turn_id: int,
        player_input: str,
        response: GameResponse,
    ) -> None:
        working.turn = turn_id
        session.state = working
        session.touch()
        # Appending wakes the archivist.
        session.log.append(Message(role="player", content=player_input))
        session.log.append(Message(role="game", content=response.fluff.as_text()))
