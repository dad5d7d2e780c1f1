from __future__ import annotations

from dataclasses import dataclass

import typer

from relreg.core.config import Config, load_config_or_default
from relreg.core.errors import ErrorCode
from relreg.core.result import Err
from relreg.core.workspace import Workspace, detect_workspace
from relreg.output.console import ConsoleProtocol, RichConsole
from relreg.release.flow.promotion import PromotionCoordinator
from relreg.release.flow.resolver import ArtifactResolver
from relreg.release.flow.state_machine import Collaborators, ReleaseStateMachine, StepTimeouts
from relreg.release.infra.audit import JsonlAuditLog
from relreg.release.infra.candidate_file import FileCandidateRepository
from relreg.release.infra.collaborators import (
    ChangelogFile,
    CommandBuildSystem,
    CommandValidator,
    ConsoleNotifier,
    DirectoryArtifactStore,
)
from relreg.release.infra.git import GitVersionControl
from relreg.release.infra.store import FileManifestStore


@dataclass(frozen=True, slots=True)
class CLIContext:
    workspace: Workspace
    config: Config
    console: ConsoleProtocol


def build_context() -> CLIContext:
    workspace = detect_workspace()

    config_result = load_config_or_default(workspace.config_path)
    if isinstance(config_result, Err):
        typer.echo(f"error: {config_result.error.message}", err=True)
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    return CLIContext(
        workspace=workspace,
        config=config_result.value,
        console=RichConsole(),
    )


@dataclass(frozen=True, slots=True)
class ReleaseServices:
    store: FileManifestStore
    coordinator: PromotionCoordinator
    resolver: ArtifactResolver
    machine: ReleaseStateMachine


def build_release_services(ctx: CLIContext, *, dry_run: bool = False) -> ReleaseServices:
    """Wire the file-backed stores and command collaborators for one invocation."""
    ws = ctx.workspace
    cfg = ctx.config

    audit = JsonlAuditLog(ws.audit_path)
    store = FileManifestStore(ws.resolve(cfg.manifest_path))
    coordinator = PromotionCoordinator(
        store,
        attempts=cfg.release.promotion_attempts,
        retry_delay=cfg.release.promotion_retry_delay_seconds,
        audit=audit,
    )
    resolver = ArtifactResolver(
        store,
        platforms=cfg.release.platforms,
        url_template=cfg.artifacts.url_template,
    )
    collaborators = Collaborators(
        vcs=GitVersionControl(
            repo_root=ws.root,
            console=ctx.console,
            remote=cfg.release.remote,
            timeout=cfg.timeouts.git,
            network_timeout=cfg.timeouts.git_network,
            dry_run=dry_run,
        ),
        builder=CommandBuildSystem(
            root=ws.root,
            command=cfg.commands.build,
            output_pattern=cfg.artifacts.build_output,
        ),
        validator=CommandValidator(root=ws.root, command=cfg.commands.validate),
        artifacts=DirectoryArtifactStore(ws.resolve(cfg.artifacts.publish_dir)),
        changelog=ChangelogFile(ws.resolve(cfg.changelog_path)),
        notifier=ConsoleNotifier(ctx.console),
    )
    machine = ReleaseStateMachine(
        store=store,
        candidates=FileCandidateRepository(ws.candidates_dir),
        collaborators=collaborators,
        coordinator=coordinator,
        resolver=resolver,
        release=cfg.release,
        timeouts=StepTimeouts(
            build=cfg.timeouts.build,
            validate=cfg.timeouts.validate,
            publish=cfg.timeouts.publish,
        ),
        audit=audit,
    )
    return ReleaseServices(
        store=store,
        coordinator=coordinator,
        resolver=resolver,
        machine=machine,
    )
