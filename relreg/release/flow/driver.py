"""Drive a candidate through the remaining transitions in one go.

``run_state_machine`` is a small step loop: a handler is looked up by the
current state, performs one transition and either advances with the updated
candidate or finishes. The release handlers only call ``ReleaseStateMachine``,
which persists every transition itself.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TypeVar

from relreg.core.result import Err, Ok, Result
from relreg.release.domain.candidate import ReleaseCandidate, ReleaseState
from relreg.release.domain.errors import ReleaseError
from relreg.release.domain.version import VersionIdentifier
from relreg.release.flow.state_machine import ReleaseStateMachine

S = TypeVar("S")


@dataclass(frozen=True, slots=True)
class StepAdvance[S]:
    session: S


@dataclass(frozen=True, slots=True)
class StepFinish:
    pass


StepOutcome = StepAdvance[S] | StepFinish
StepHandler = Callable[[S], Result[StepOutcome[S], ReleaseError]]
GetStep = Callable[[S], str]
OnStep = Callable[[S], None]


FINISH = StepFinish()


def advance[S](session: S) -> StepAdvance[S]:
    return StepAdvance(session=session)


def run_state_machine(
    *,
    initial_state: S,
    get_step: GetStep[S],
    handlers: Mapping[str, StepHandler[S]],
    on_step: OnStep[S] | None = None,
) -> Result[S, ReleaseError]:
    current = initial_state

    while True:
        step = get_step(current)
        handler = handlers.get(step)
        if handler is None:
            return Err(
                ReleaseError(
                    kind="invalid_input",
                    message=f"no release step for state: {step}",
                )
            )

        outcome = handler(current)
        if isinstance(outcome, Err):
            return outcome

        if isinstance(outcome.value, StepFinish):
            return Ok(current)

        current = outcome.value.session
        if on_step is not None:
            on_step(current)


Transition = Callable[[VersionIdentifier], Result[ReleaseCandidate, ReleaseError]]


def _step(action: Transition) -> StepHandler[ReleaseCandidate]:
    def handler(c: ReleaseCandidate) -> Result[StepOutcome[ReleaseCandidate], ReleaseError]:
        moved = action(c.version)
        if isinstance(moved, Err):
            return moved
        return Ok(advance(moved.value))

    return handler


def _finish(_: ReleaseCandidate) -> Result[StepOutcome[ReleaseCandidate], ReleaseError]:
    return Ok(FINISH)


def release_handlers(
    machine: ReleaseStateMachine, *, approved_by: str | None
) -> dict[ReleaseState, StepHandler[ReleaseCandidate]]:
    """Handlers for every state; without an approver the run stops at ``published``."""
    handlers: dict[ReleaseState, StepHandler[ReleaseCandidate]] = {
        "drafted": _step(machine.branch),
        "branched": _step(machine.build),
        "candidate_built": _step(machine.validate),
        "validated": _step(machine.tag),
        "tagged": _step(machine.publish),
        "published": _finish,
        "promoted": _finish,
        "aborted": _finish,
    }
    if approved_by is not None:
        handlers["published"] = _step(lambda v: machine.promote(v, approved_by=approved_by))
    return handlers


def run_release(
    machine: ReleaseStateMachine,
    version: VersionIdentifier,
    *,
    approved_by: str | None = None,
    on_step: OnStep[ReleaseCandidate] | None = None,
) -> Result[ReleaseCandidate, ReleaseError]:
    """Continue the candidate for ``version`` (starting one if none is active)."""
    loaded = machine.candidates.load(version)
    if isinstance(loaded, Err):
        return loaded

    existing = loaded.value
    if existing is None or existing.state == "aborted":
        started = machine.draft(version)
        if isinstance(started, Err):
            return started
        existing = started.value
        if on_step is not None:
            on_step(existing)

    return run_state_machine(
        initial_state=existing,
        get_step=lambda c: c.state,
        handlers=release_handlers(machine, approved_by=approved_by),
        on_step=on_step,
    )
