from __future__ import annotations

from pathlib import Path

from relreg.core.result import Err, Ok, Result
from relreg.output.console import ConsoleProtocol, Style
from relreg.platform.process import run as run_process
from relreg.release.domain.errors import ReleaseError


class GitVersionControl:
    """Version control backed by the ``git`` CLI in ``repo_root``.

    With ``dry_run`` the commands are printed but not executed; read-only
    queries still run.
    """

    def __init__(
        self,
        *,
        repo_root: Path,
        console: ConsoleProtocol,
        remote: str = "origin",
        timeout: float = 30.0,
        network_timeout: float = 180.0,
        dry_run: bool = False,
    ) -> None:
        self.repo_root = repo_root
        self.console = console
        self.remote = remote
        self.timeout = timeout
        self.network_timeout = network_timeout
        self.dry_run = dry_run

    def _git(self, args: list[str], *, network: bool = False) -> Result[str, ReleaseError]:
        cmd = ["git", *args]
        timeout = self.network_timeout if network else self.timeout
        result = run_process(cmd, cwd=self.repo_root, timeout=timeout)
        if isinstance(result, Err):
            e = result.error
            return Err(
                ReleaseError(
                    kind="vcs_failed",
                    message=f"git failed: {' '.join(cmd[:3])}",
                    hint=e.stderr.strip() or None,
                )
            )
        return result

    def _mutating(self, args: list[str], *, network: bool = False) -> Result[None, ReleaseError]:
        self.console.print(f"git {' '.join(args)}", Style.DIM)
        if self.dry_run:
            return Ok(None)
        result = self._git(args, network=network)
        if isinstance(result, Err):
            return result
        return Ok(None)

    def branch_exists(self, name: str) -> Result[bool, ReleaseError]:
        out = self._git(["branch", "--list", name])
        if isinstance(out, Err):
            return out
        return Ok(bool(out.value.strip()))

    def create_branch(self, name: str) -> Result[None, ReleaseError]:
        exists = self.branch_exists(name)
        if isinstance(exists, Err):
            return exists
        if exists.value:
            # A branch left behind by an aborted attempt is reused.
            self.console.print(f"branch {name} already exists; reusing it", Style.DIM)
            return Ok(None)
        return self._mutating(["branch", name])

    def tag_exists(self, tag: str) -> Result[bool, ReleaseError]:
        out = self._git(["tag", "--list", tag])
        if isinstance(out, Err):
            return out
        return Ok(bool(out.value.strip()))

    def create_tag(
        self, tag: str, message: str, *, target: str | None = None
    ) -> Result[None, ReleaseError]:
        args = ["tag", "-a", tag, "-m", message]
        if target is not None:
            args.append(target)
        return self._mutating(args)

    def push(self, ref: str) -> Result[None, ReleaseError]:
        return self._mutating(["push", self.remote, ref], network=True)
