"""Process exit codes for the relreg CLI.

The numeric values are part of the CLI contract (scripts branch on them) and
must stay stable:
- 0: success
- 1: user error or a failed state-machine guard
- 2: environment error (bad config, missing workspace)
- 3: build or validation failure
- 5: I/O error (manifest or candidate file unreadable/unwritable)
- 6: conflict (manifest changed concurrently and retries ran out)
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Exit codes for CLI commands."""

    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    BUILD_ERROR = 3
    IO_ERROR = 5
    CONFLICT = 6

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK

    @property
    def is_error(self) -> bool:
        return self != ErrorCode.OK
