from __future__ import annotations

from relreg.output.console import ConsoleProtocol, Style
from relreg.release.domain.candidate import ReleaseCandidate
from relreg.release.domain.download import DownloadDescriptor
from relreg.release.domain.errors import ReleaseError
from relreg.release.domain.manifest import LATEST_ALIAS, Manifest


def format_error(error: ReleaseError) -> str:
    """One-line failure report: ``error[<kind>]: <stage>: <message>``."""
    if error.stage:
        return f"error[{error.kind}]: {error.stage}: {error.message}"
    return f"error[{error.kind}]: {error.message}"


def print_manifest(console: ConsoleProtocol, manifest: Manifest) -> None:
    if not manifest.versions:
        console.print("manifest is empty", Style.DIM)
        return

    rows: list[list[str]] = []
    for v in reversed(manifest.versions):
        entry = manifest.entry(v)
        marks: list[str] = []
        if manifest.latest == v:
            marks.append(LATEST_ALIAS)
        if v.is_prerelease():
            marks.append("pre-release")
        if manifest.is_deprecated(v):
            marks.append("deprecated")
        rows.append(
            [
                str(v),
                entry.created_at if entry else "",
                (entry.changelog_sha256[:12] if entry else ""),
                ", ".join(marks),
            ]
        )
    console.table("manifest", ["version", "created", "changelog", "tags"], rows)


def print_candidate(console: ConsoleProtocol, c: ReleaseCandidate) -> None:
    console.header(f"release {c.version} ({c.state})")
    console.print(f"attempt: {c.attempt_id}  created: {c.created_at}", Style.DIM)
    if c.branch:
        console.print(f"branch: {c.branch}")
    if c.tag:
        console.print(f"tag: {c.tag}")
    if c.approved_by:
        console.print(f"approved by: {c.approved_by}")

    rows: list[list[str]] = []
    for platform in c.required_platforms:
        build = c.build_for(platform)
        check = next((r for r in c.validations if r.platform == platform), None)
        published = next((a for a in c.published if a.platform == platform), None)
        if check is None:
            checked = "-"
        elif check.passed:
            checked = "passed"
        else:
            checked = f"failed {check.detail}".strip()
        rows.append(
            [
                platform,
                "yes" if build else "-",
                checked,
                published.location if published else "-",
            ]
        )
    console.table("platforms", ["platform", "built", "validation", "published"], rows)

    if c.failure:
        console.error(c.failure)


def print_history(console: ConsoleProtocol, c: ReleaseCandidate) -> None:
    for t in c.history:
        line = f"{t.at}  {t.from_state} --{t.event}--> {t.to_state}"
        if t.note:
            line = f"{line}  ({t.note})"
        console.print(line, Style.DIM)


def print_candidates(console: ConsoleProtocol, candidates: list[ReleaseCandidate]) -> None:
    if not candidates:
        console.print("no release candidates", Style.DIM)
        return
    console.table(
        "candidates",
        ["version", "state", "attempt", "created"],
        [[str(c.version), c.state, c.attempt_id, c.created_at] for c in candidates],
    )


def print_descriptor(console: ConsoleProtocol, d: DownloadDescriptor) -> None:
    console.header(f"relreg {d.version}")
    for platform, url in d.urls:
        console.print(f"{platform}: {url}")
