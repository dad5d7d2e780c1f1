from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering
from typing import Literal

from relreg.core.result import Err, Ok, Result
from relreg.release.domain.errors import ReleaseError

PrereleaseLabel = Literal["alpha", "beta"]

_VERSION_RE = re.compile(
    r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-(alpha|beta)(?:\.(0|[1-9]\d*))?)?$"
)

_LABEL_RANK: dict[str, int] = {"alpha": 0, "beta": 1}


@total_ordering
@dataclass(frozen=True, slots=True)
class VersionIdentifier:
    major: int
    minor: int
    patch: int
    label: PrereleaseLabel | None = None
    number: int | None = None

    def is_prerelease(self) -> bool:
        return self.label is not None

    @property
    def base(self) -> VersionIdentifier:
        """The final release of the same triplet."""
        return VersionIdentifier(self.major, self.minor, self.patch)

    def sort_key(self) -> tuple[int, int, int, int, int, int]:
        # Final releases rank above every pre-release of the same triplet;
        # a bare label ranks below the same label with a number.
        if self.label is None:
            return (self.major, self.minor, self.patch, 1, 0, 0)
        number = -1 if self.number is None else self.number
        return (self.major, self.minor, self.patch, 0, _LABEL_RANK[self.label], number)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, VersionIdentifier):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.label is not None:
            text += f"-{self.label}"
            if self.number is not None:
                text += f".{self.number}"
        return text


def parse_version(text: str) -> Result[VersionIdentifier, ReleaseError]:
    m = _VERSION_RE.match(text.strip())
    if m is None:
        return Err(
            ReleaseError(
                kind="invalid_version",
                message=f"invalid version: {text!r}",
                hint="expected MAJOR.MINOR.PATCH[-alpha|-beta[.N]], e.g. 0.7.0-beta.1",
            )
        )

    label = m.group(4)
    number = m.group(5)
    return Ok(
        VersionIdentifier(
            major=int(m.group(1)),
            minor=int(m.group(2)),
            patch=int(m.group(3)),
            label="alpha" if label == "alpha" else "beta" if label == "beta" else None,
            number=int(number) if number is not None else None,
        )
    )


def compare(a: VersionIdentifier, b: VersionIdentifier) -> Literal[-1, 0, 1]:
    ka = a.sort_key()
    kb = b.sort_key()
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0
