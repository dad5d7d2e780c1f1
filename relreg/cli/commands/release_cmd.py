from __future__ import annotations

from typing import NoReturn

import typer

from relreg.cli.context import CLIContext, ReleaseServices, build_context, build_release_services
from relreg.core.errors import ErrorCode
from relreg.core.result import Err, Result
from relreg.output.console import Style
from relreg.release.domain.candidate import ReleaseCandidate
from relreg.release.domain.errors import ReleaseError
from relreg.release.domain.manifest import manifest_to_json
from relreg.release.domain.version import VersionIdentifier, parse_version
from relreg.release.flow.driver import run_release
from relreg.release.view.render import (
    format_error,
    print_candidate,
    print_candidates,
    print_descriptor,
    print_history,
    print_manifest,
)

release_app = typer.Typer(add_completion=False, no_args_is_help=True)


def release_error_code(kind: str) -> ErrorCode:
    if kind == "concurrent_modification":
        return ErrorCode.CONFLICT
    if kind in {"build_failed", "validation_failed"}:
        return ErrorCode.BUILD_ERROR
    if kind == "store_failed":
        return ErrorCode.IO_ERROR
    if kind == "vcs_failed":
        return ErrorCode.ENV_ERROR
    return ErrorCode.USER_ERROR


def exit_release(error: ReleaseError) -> NoReturn:
    typer.echo(format_error(error), err=True)
    if error.hint:
        typer.echo(f"hint: {error.hint}", err=True)
    raise typer.Exit(code=int(release_error_code(error.kind)))


def _unwrap[T](result: Result[T, ReleaseError]) -> T:
    if isinstance(result, Err):
        exit_release(result.error)
    return result.value


def _version(text: str) -> VersionIdentifier:
    return _unwrap(parse_version(text))


def _services(*, dry_run: bool = False) -> tuple[CLIContext, ReleaseServices]:
    ctx = build_context()
    return ctx, build_release_services(ctx, dry_run=dry_run)


def _report(ctx: CLIContext, c: ReleaseCandidate) -> None:
    ctx.console.success(f"{c.version}: {c.state}")


# -- candidate transitions ---------------------------------------------------------


@release_app.command("start")
def start_cmd(
    version: str = typer.Argument(..., help="Version to release (e.g. 0.7.0, 0.8.0-beta.1)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print git commands only"),
) -> None:
    """Draft a release candidate and create its release branch."""
    ctx, svc = _services(dry_run=dry_run)
    _report(ctx, _unwrap(svc.machine.start(_version(version))))


@release_app.command("build")
def build_cmd(version: str = typer.Argument(...)) -> None:
    """Build every required platform archive."""
    ctx, svc = _services()
    _report(ctx, _unwrap(svc.machine.build(_version(version))))


@release_app.command("validate")
def validate_cmd(version: str = typer.Argument(...)) -> None:
    """Validate all platform archives in parallel."""
    ctx, svc = _services()
    _report(ctx, _unwrap(svc.machine.validate(_version(version))))


@release_app.command("tag")
def tag_cmd(
    version: str = typer.Argument(...),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print git commands only"),
) -> None:
    """Create and push the release tag."""
    ctx, svc = _services(dry_run=dry_run)
    _report(ctx, _unwrap(svc.machine.tag(_version(version))))


@release_app.command("publish")
def publish_cmd(version: str = typer.Argument(...)) -> None:
    """Publish platform archives; re-run to finish a partial publish."""
    ctx, svc = _services()
    _report(ctx, _unwrap(svc.machine.publish(_version(version))))


@release_app.command("promote")
def promote_cmd(
    version: str = typer.Argument(...),
    approved_by: str = typer.Option(..., "--approved-by", help="Who approved the promotion"),
) -> None:
    """Add the version to the manifest and move latest to it."""
    ctx, svc = _services()
    c = _unwrap(svc.machine.promote(_version(version), approved_by=approved_by))
    _report(ctx, c)


@release_app.command("abort")
def abort_cmd(
    version: str = typer.Argument(...),
    reason: str = typer.Option("manual abort", "--reason"),
) -> None:
    """Abort an in-flight release candidate."""
    ctx, svc = _services()
    c = _unwrap(svc.machine.abort(_version(version), reason=reason))
    ctx.console.warning(f"{c.version}: aborted ({reason})")


@release_app.command("run")
def run_cmd(
    version: str = typer.Argument(...),
    approved_by: str | None = typer.Option(
        None,
        "--approved-by",
        help="Promote at the end; without it the run stops once published",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print git commands only"),
) -> None:
    """Drive a candidate through every remaining step."""
    ctx, svc = _services(dry_run=dry_run)
    c = _unwrap(
        run_release(
            svc.machine,
            _version(version),
            approved_by=approved_by,
            on_step=lambda c: ctx.console.print(f"{c.version}: {c.state}", Style.DIM),
        )
    )
    if c.state == "aborted":
        ctx.console.warning(f"{c.version}: aborted ({c.failure or 'no reason recorded'})")
        return
    _report(ctx, c)


# -- manifest operations ----------------------------------------------------------------


@release_app.command("rollback")
def rollback_cmd(version: str = typer.Argument(..., help="Older stable version")) -> None:
    """Point latest back at an older stable version."""
    ctx, svc = _services()
    m = _unwrap(svc.coordinator.rollback(_version(version)))
    ctx.console.success(f"latest -> {m.latest}")


@release_app.command("deprecate")
def deprecate_cmd(
    version: str = typer.Argument(...),
    reason: str = typer.Option("", "--reason"),
) -> None:
    """Mark a version as no longer downloadable."""
    ctx, svc = _services()
    v = _version(version)
    _unwrap(svc.coordinator.deprecate(v, reason=reason))
    ctx.console.success(f"{v}: deprecated")


# -- read-only ------------------------------------------------------------------------


@release_app.command("status")
def status_cmd(
    version: str | None = typer.Argument(None),
    history: bool = typer.Option(False, "--history", help="Show every transition"),
) -> None:
    """Show one candidate, or all candidates and the current latest."""
    ctx, svc = _services()
    candidates = svc.machine.candidates

    if version is not None:
        c = _unwrap(svc.machine.load(_version(version)))
        print_candidate(ctx.console, c)
        if history:
            print_history(ctx.console, c)
        return

    print_candidates(ctx.console, _unwrap(candidates.list_all()))
    m = _unwrap(svc.store.read())
    ctx.console.print(f"latest: {m.latest if m.latest is not None else '-'}")


@release_app.command("resolve")
def resolve_cmd(
    version: str = typer.Argument("latest", help="Version or 'latest'"),
    platform: str | None = typer.Option(
        None, "--platform", help="Print only the URL for this platform"
    ),
) -> None:
    """Resolve a version (or latest) to its download URLs."""
    ctx, svc = _services()
    d = _unwrap(svc.resolver.resolve(version))
    if platform is None:
        print_descriptor(ctx.console, d)
        return

    url = d.url_for(platform)
    if url is None:
        exit_release(
            ReleaseError(
                kind="invalid_input",
                message=f"unknown platform: {platform}",
                stage="resolve",
                hint=", ".join(p for p, _ in d.urls),
            )
        )
    typer.echo(url)


@release_app.command("manifest")
def manifest_cmd(
    as_json: bool = typer.Option(False, "--json", help="Print the raw manifest document"),
) -> None:
    """Show the manifest."""
    ctx, svc = _services()
    m = _unwrap(svc.store.read())
    if as_json:
        typer.echo(manifest_to_json(m), nl=False)
        return
    print_manifest(ctx.console, m)
