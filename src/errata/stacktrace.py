"""Turn Python exceptions and call stacks into event payload fragments.

Frames are listed oldest first, the order ingestion expects. Chained
exceptions (__cause__ / __context__) are emitted oldest first as well, so
the exception that was actually raised comes last.
"""

from __future__ import annotations

import traceback
from collections.abc import Iterable
from typing import Any

MAX_CHAIN_DEPTH = 10


def _frame_payload(frame: traceback.FrameSummary) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "filename": frame.filename,
        "function": frame.name,
        "lineno": frame.lineno,
    }
    if frame.line:
        payload["context_line"] = frame.line
    return payload


def frames_payload(frames: Iterable[traceback.FrameSummary]) -> dict[str, Any]:
    return {"frames": [_frame_payload(frame) for frame in frames]}


def current_stack(skip: int = 1) -> dict[str, Any]:
    """Capture the caller's stack as a stacktrace payload.

    Args:
        skip: Innermost frames to omit; 1 drops this function itself.
    """
    frames = traceback.extract_stack()
    if skip:
        frames = frames[:-skip]
    return frames_payload(frames)


def _exception_chain(error: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen and len(chain) < MAX_CHAIN_DEPTH:
        chain.append(current)
        seen.add(id(current))
        if current.__cause__ is not None:
            current = current.__cause__
        elif current.__context__ is not None and not current.__suppress_context__:
            current = current.__context__
        else:
            current = None
    chain.reverse()
    return chain


def exception_values(error: BaseException) -> tuple[dict[str, Any], ...]:
    """Payload values for an exception and the exceptions chained to it."""
    values = []
    for exc in _exception_chain(error):
        exc_type = type(exc)
        value: dict[str, Any] = {
            "type": exc_type.__qualname__,
            "value": str(exc),
            "module": exc_type.__module__,
        }
        if exc.__traceback__ is not None:
            value["stacktrace"] = frames_payload(traceback.extract_tb(exc.__traceback__))
        values.append(value)
    return tuple(values)
