"""Error payload for the release bounded context."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ReleaseErrorKind = Literal[
    "invalid_version",
    "duplicate_version",
    "unknown_version",
    "version_out_of_order",
    "concurrent_modification",
    "validation_failed",
    "build_failed",
    "publish_incomplete",
    "invalid_transition",
    "tag_exists",
    "version_exists",
    "candidate_exists",
    "candidate_missing",
    "rollback_invalid",
    "deprecate_invalid",
    "invalid_input",
    "store_failed",
    "vcs_failed",
]


@dataclass(frozen=True, slots=True)
class ReleaseError:
    """Canonical release error.

    ``kind`` is the machine-readable identifier printed by the CLI. ``stage``
    names the state-machine stage or store operation that failed, and
    ``platforms`` lists the platforms involved for per-platform failures.
    """

    kind: ReleaseErrorKind
    message: str
    stage: str | None = None
    hint: str | None = None
    platforms: tuple[str, ...] = ()

    def pretty(self) -> str:
        text = self.message
        if self.stage:
            text = f"{self.stage}: {text}"
        if self.hint:
            text = f"{text} (hint: {self.hint})"
        return text

    def at(self, stage: str) -> ReleaseError:
        """Return a copy tagged with ``stage`` unless one is already set."""
        if self.stage is not None:
            return self
        return ReleaseError(
            kind=self.kind,
            message=self.message,
            stage=stage,
            hint=self.hint,
            platforms=self.platforms,
        )

    def within(self, stage: str) -> ReleaseError:
        """Return a copy reported at ``stage``; an inner stage moves into the message."""
        message = f"{self.stage}: {self.message}" if self.stage else self.message
        return ReleaseError(
            kind=self.kind,
            message=message,
            stage=stage,
            hint=self.hint,
            platforms=self.platforms,
        )
