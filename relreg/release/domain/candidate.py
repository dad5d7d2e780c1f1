"""Release candidate value and its transition table.

Only table-level legality and the pure guards (platform coverage) live here.
Guards that need the outside world (manifest lookups, version control, the
manifest CAS) are checked by ``relreg.release.flow.state_machine`` before it
calls ``apply_event``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any, Literal
from uuid import uuid4

from relreg.core.result import Err, Ok, Result
from relreg.release.domain.errors import ReleaseError
from relreg.release.domain.manifest import ManifestEntry
from relreg.release.domain.version import VersionIdentifier

ReleaseState = Literal[
    "drafted",
    "branched",
    "candidate_built",
    "validated",
    "tagged",
    "published",
    "promoted",
    "aborted",
]

ReleaseEvent = Literal[
    "branch_created",
    "build_succeeded",
    "build_failed",
    "validations_passed",
    "validation_failed",
    "tag_pushed",
    "artifacts_published",
    "promotion_approved",
    "manual_abort",
]

STATES: tuple[ReleaseState, ...] = (
    "drafted",
    "branched",
    "candidate_built",
    "validated",
    "tagged",
    "published",
    "promoted",
    "aborted",
)

TERMINAL_STATES: frozenset[ReleaseState] = frozenset({"promoted", "aborted"})

TRANSITIONS: dict[tuple[ReleaseState, ReleaseEvent], ReleaseState] = {
    ("drafted", "branch_created"): "branched",
    ("branched", "build_succeeded"): "candidate_built",
    ("branched", "build_failed"): "aborted",
    ("candidate_built", "validations_passed"): "validated",
    ("candidate_built", "validation_failed"): "aborted",
    ("validated", "tag_pushed"): "tagged",
    ("tagged", "artifacts_published"): "published",
    ("published", "promotion_approved"): "promoted",
}


def _now() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds")


@dataclass(frozen=True, slots=True)
class PlatformArtifact:
    platform: str
    location: str  # local path for builds, URL once published


@dataclass(frozen=True, slots=True)
class ValidationResult:
    platform: str
    passed: bool
    detail: str = ""


@dataclass(frozen=True, slots=True)
class TransitionRecord:
    from_state: ReleaseState
    event: ReleaseEvent
    to_state: ReleaseState
    at: str
    note: str | None = None


@dataclass(frozen=True, slots=True)
class ReleaseCandidate:
    version: VersionIdentifier
    attempt_id: str
    created_at: str
    state: ReleaseState
    required_platforms: tuple[str, ...]
    branch: str | None = None
    tag: str | None = None
    builds: tuple[PlatformArtifact, ...] = ()
    validations: tuple[ValidationResult, ...] = ()
    changelog: str | None = None
    entry: ManifestEntry | None = None
    published: tuple[PlatformArtifact, ...] = ()
    approved_by: str | None = None
    failure: str | None = None
    history: tuple[TransitionRecord, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def build_for(self, platform: str) -> PlatformArtifact | None:
        for b in self.builds:
            if b.platform == platform:
                return b
        return None


def new_candidate(
    version: VersionIdentifier, *, required_platforms: Iterable[str]
) -> ReleaseCandidate:
    platforms = tuple(dict.fromkeys(required_platforms))
    return ReleaseCandidate(
        version=version,
        attempt_id=uuid4().hex[:12],
        created_at=_now(),
        state="drafted",
        required_platforms=platforms,
    )


def next_state(state: ReleaseState, event: ReleaseEvent) -> ReleaseState | None:
    if event == "manual_abort":
        return None if state in TERMINAL_STATES else "aborted"
    return TRANSITIONS.get((state, event))


def apply_event(
    candidate: ReleaseCandidate,
    event: ReleaseEvent,
    *,
    note: str | None = None,
    **changes: Any,
) -> Result[ReleaseCandidate, ReleaseError]:
    """Move ``candidate`` along ``event``, recording the transition.

    ``changes`` are field updates applied together with the state change.
    """
    target = next_state(candidate.state, event)
    if target is None:
        return Err(
            ReleaseError(
                kind="invalid_transition",
                message=f"cannot apply {event} to a candidate in state {candidate.state}",
                stage=candidate.state,
            )
        )

    record = TransitionRecord(
        from_state=candidate.state,
        event=event,
        to_state=target,
        at=_now(),
        note=note,
    )
    return Ok(replace(candidate, **changes, state=target, history=(*candidate.history, record)))


def require_state(
    candidate: ReleaseCandidate, expected: ReleaseState, *, action: str
) -> Result[None, ReleaseError]:
    if candidate.state == expected:
        return Ok(None)
    return Err(
        ReleaseError(
            kind="invalid_transition",
            message=(
                f"{action} requires state {expected}, "
                f"candidate {candidate.version} is {candidate.state}"
            ),
            stage=candidate.state,
        )
    )


# -- pure guards ---------------------------------------------------------------


def missing_platforms(required: Iterable[str], present: Iterable[str]) -> tuple[str, ...]:
    have = set(present)
    return tuple(p for p in required if p not in have)


def build_gate(
    required: tuple[str, ...], builds: Iterable[PlatformArtifact]
) -> Result[None, ReleaseError]:
    missing = missing_platforms(required, (b.platform for b in builds))
    if missing:
        return Err(
            ReleaseError(
                kind="build_failed",
                message=f"no artifact built for: {', '.join(missing)}",
                stage="branched",
                platforms=missing,
            )
        )
    return Ok(None)


def validation_gate(
    required: tuple[str, ...], results: Iterable[ValidationResult]
) -> Result[None, ReleaseError]:
    """All required platforms must report, and all reports must pass."""
    results = tuple(results)
    failed = tuple(r.platform for r in results if not r.passed and r.platform in required)
    if failed:
        details = "; ".join(
            f"{r.platform}: {r.detail}" for r in results if r.platform in failed and r.detail
        )
        return Err(
            ReleaseError(
                kind="validation_failed",
                message=f"validation failed on: {', '.join(failed)}",
                stage="candidate_built",
                hint=details or None,
                platforms=failed,
            )
        )

    missing = missing_platforms(required, (r.platform for r in results if r.passed))
    if missing:
        return Err(
            ReleaseError(
                kind="validation_failed",
                message=f"no validation result for: {', '.join(missing)}",
                stage="candidate_built",
                platforms=missing,
            )
        )
    return Ok(None)


def publish_gate(
    required: tuple[str, ...], published: Iterable[PlatformArtifact]
) -> Result[None, ReleaseError]:
    missing = missing_platforms(required, (p.platform for p in published))
    if missing:
        return Err(
            ReleaseError(
                kind="publish_incomplete",
                message=f"artifacts missing for: {', '.join(missing)}",
                stage="tagged",
                hint="re-run publish once the missing artifacts are available",
                platforms=missing,
            )
        )
    return Ok(None)
