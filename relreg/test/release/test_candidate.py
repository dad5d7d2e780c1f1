from __future__ import annotations

import pytest

from relreg.core.result import Err, Ok
from relreg.release.domain.candidate import (
    STATES,
    TERMINAL_STATES,
    TRANSITIONS,
    PlatformArtifact,
    ReleaseEvent,
    ReleaseState,
    ValidationResult,
    apply_event,
    build_gate,
    new_candidate,
    next_state,
    publish_gate,
    require_state,
    validation_gate,
)

from ._helpers import v

PLATFORMS = ("x86_64-linux", "x86_64-darwin")


def test_new_candidate_is_drafted() -> None:
    c = new_candidate(v("0.7.0"), required_platforms=["a", "b", "a"])

    assert c.state == "drafted"
    assert c.required_platforms == ("a", "b")
    assert c.history == ()
    assert len(c.attempt_id) == 12


def test_happy_path_table() -> None:
    path: list[tuple[ReleaseEvent, ReleaseState]] = [
        ("branch_created", "branched"),
        ("build_succeeded", "candidate_built"),
        ("validations_passed", "validated"),
        ("tag_pushed", "tagged"),
        ("artifacts_published", "published"),
        ("promotion_approved", "promoted"),
    ]
    state: ReleaseState = "drafted"
    for event, expected in path:
        nxt = next_state(state, event)
        assert nxt == expected
        state = expected


@pytest.mark.parametrize("state", [s for s in STATES if s not in TERMINAL_STATES])
def test_manual_abort_from_any_live_state(state: ReleaseState) -> None:
    assert next_state(state, "manual_abort") == "aborted"


@pytest.mark.parametrize("state", sorted(TERMINAL_STATES))
def test_terminal_states_accept_nothing(state: ReleaseState) -> None:
    assert next_state(state, "manual_abort") is None
    assert all(s != state for s, _ in TRANSITIONS)


def test_skipping_states_is_invalid() -> None:
    c = new_candidate(v("0.7.0"), required_platforms=PLATFORMS)

    result = apply_event(c, "tag_pushed")

    assert isinstance(result, Err)
    assert result.error.kind == "invalid_transition"
    assert result.error.stage == "drafted"


def test_apply_event_records_history_and_changes() -> None:
    c = new_candidate(v("0.7.0"), required_platforms=PLATFORMS)

    result = apply_event(c, "branch_created", note="via test", branch="release-0.7.0")

    assert isinstance(result, Ok)
    moved = result.value
    assert moved.state == "branched"
    assert moved.branch == "release-0.7.0"
    assert moved.history[-1].from_state == "drafted"
    assert moved.history[-1].event == "branch_created"
    assert moved.history[-1].note == "via test"
    assert c.state == "drafted"


def test_require_state() -> None:
    c = new_candidate(v("0.7.0"), required_platforms=PLATFORMS)

    assert require_state(c, "drafted", action="branch") == Ok(None)
    wrong = require_state(c, "tagged", action="publish")
    assert isinstance(wrong, Err)
    assert "publish requires state tagged" in wrong.error.message


def test_build_gate_names_missing_platforms() -> None:
    result = build_gate(PLATFORMS, [PlatformArtifact("x86_64-linux", "/tmp/a.tar.gz")])

    assert isinstance(result, Err)
    assert result.error.kind == "build_failed"
    assert result.error.platforms == ("x86_64-darwin",)


def test_validation_gate_requires_every_platform_to_pass() -> None:
    one_failed = validation_gate(
        PLATFORMS,
        [
            ValidationResult("x86_64-linux", True),
            ValidationResult("x86_64-darwin", False, "smoke test crashed"),
        ],
    )
    one_missing = validation_gate(PLATFORMS, [ValidationResult("x86_64-linux", True)])
    all_passed = validation_gate(PLATFORMS, [ValidationResult(p, True) for p in PLATFORMS])

    assert isinstance(one_failed, Err)
    assert one_failed.error.platforms == ("x86_64-darwin",)
    assert one_failed.error.hint == "x86_64-darwin: smoke test crashed"
    assert isinstance(one_missing, Err)
    assert one_missing.error.kind == "validation_failed"
    assert all_passed == Ok(None)


def test_publish_gate() -> None:
    partial = publish_gate(PLATFORMS, [PlatformArtifact("x86_64-linux", "https://x/a")])

    assert isinstance(partial, Err)
    assert partial.error.kind == "publish_incomplete"
    assert partial.error.stage == "tagged"
