from __future__ import annotations

import os

import pytest


def require_arch_checks_enabled() -> None:
    """Skip architecture checks unless RELREG_ARCH_CHECKS=1."""

    if os.getenv("RELREG_ARCH_CHECKS") != "1":
        pytest.skip("architecture checks are opt-in; set RELREG_ARCH_CHECKS=1 to enable")
