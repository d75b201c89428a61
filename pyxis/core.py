from __future__ import annotations

"""Compatibility facade for the pyxis scan engine.

Public imports remain stable while implementation lives in `pyxis.engine.runtime`.
"""

from .engine.runtime import *  # noqa: F401,F403
from .engine.runtime import _run_coro_sync
from .engine.transport import pick_user_agent

__all__ = [
    "PYXIS",
    "Runner",
    "RateLimiter",
    "Phase",
    "pick_user_agent",
    "fmt_td",
    "logger",
    "_run_coro_sync",
]
