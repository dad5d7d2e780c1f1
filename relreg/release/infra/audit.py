from __future__ import annotations

import getpass
import json
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal, Protocol

from relreg.core.result import Err, Ok, Result
from relreg.core.structured import as_str_dict, get_str, get_table
from relreg.platform.files import append_line
from relreg.release.domain.errors import ReleaseError

AuditAction = Literal[
    "candidate_transition",
    "manifest_append",
    "manifest_set_latest",
    "manifest_rollback",
    "manifest_deprecate",
]


@dataclass(frozen=True, slots=True)
class AuditRecord:
    at: str
    actor: str
    action: AuditAction
    version: str
    details: dict[str, str]


class AuditSink(Protocol):
    def record(
        self, action: AuditAction, version: str, **details: str
    ) -> Result[None, ReleaseError]: ...


def _actor() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


class JsonlAuditLog:
    """Append-only JSON-lines log; one object per manifest mutation or transition."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def record(
        self, action: AuditAction, version: str, **details: str
    ) -> Result[None, ReleaseError]:
        payload = {
            "at": datetime.now(tz=UTC).isoformat(timespec="seconds"),
            "actor": _actor(),
            "action": action,
            "version": version,
            "details": details,
        }
        try:
            append_line(self.path, json.dumps(payload, sort_keys=True))
        except OSError as e:
            return Err(
                ReleaseError(
                    kind="store_failed",
                    message=f"failed to write audit log: {e}",
                    stage="audit",
                    hint=str(self.path),
                )
            )
        return Ok(None)

    def read(self) -> Result[list[AuditRecord], ReleaseError]:
        if not self.path.exists():
            return Ok([])
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            return Err(
                ReleaseError(kind="store_failed", message=f"failed to read audit log: {e}")
            )

        out: list[AuditRecord] = []
        for n, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                obj: object = json.loads(line)
            except json.JSONDecodeError as e:
                return Err(
                    ReleaseError(
                        kind="store_failed",
                        message=f"invalid audit line {n}: {e}",
                        hint=str(self.path),
                    )
                )
            d = as_str_dict(obj) or {}
            details = get_table(d, "details") or {}
            out.append(
                AuditRecord(
                    at=get_str(d, "at") or "",
                    actor=get_str(d, "actor") or "",
                    action=_action(get_str(d, "action")),
                    version=get_str(d, "version") or "",
                    details={k: v for k, v in details.items() if isinstance(v, str)},
                )
            )
        return Ok(out)


def _action(raw: str | None) -> AuditAction:
    match raw:
        case "manifest_append":
            return "manifest_append"
        case "manifest_set_latest":
            return "manifest_set_latest"
        case "manifest_rollback":
            return "manifest_rollback"
        case "manifest_deprecate":
            return "manifest_deprecate"
        case _:
            return "candidate_transition"


class NullAuditLog:
    def record(
        self, action: AuditAction, version: str, **details: str
    ) -> Result[None, ReleaseError]:
        return Ok(None)
