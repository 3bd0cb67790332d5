from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

# Context-local (safe for async & worker threads started via asyncio.to_thread)
_current_run_id: ContextVar[Optional[str]] = ContextVar("current_run_id", default=None)
_current_cycle_id: ContextVar[Optional[str]] = ContextVar(
    "current_cycle_id", default=None
)


def set_run_id(run_id: str) -> None:
    _current_run_id.set(run_id)


def get_run_id() -> Optional[str]:
    return _current_run_id.get()


def get_cycle_id() -> Optional[str]:
    return _current_cycle_id.get()


@contextmanager
def cycle_scope(kind: str) -> Iterator[str]:
    """Tags audit events with a fresh cycle id ("evaluate-<uuid>") for the block."""
    cycle_id = f"{kind}-{uuid.uuid4()}"
    token = _current_cycle_id.set(cycle_id)
    try:
        yield cycle_id
    finally:
        _current_cycle_id.reset(token)
