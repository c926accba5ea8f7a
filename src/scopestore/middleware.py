"""Middleware pipeline applied to every mutating operation."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from scopestore._utils import maybe_await
from scopestore.config import Middleware
from scopestore.operations import Operation, OperationKind


async def apply_middleware(
    stages: Sequence[Middleware],
    kind: OperationKind,
    previous_state: Any,
    next_state: Any,
) -> Any:
    """Fold *stages* left to right over the candidate state.

    Each stage sees the output of the one before it and is awaited
    before the next runs. A raising stage aborts the fold; the caller
    must not commit anything in that case.
    """
    if not stages:
        return next_state

    final_state = next_state
    for stage in stages:
        final_state = await maybe_await(
            stage(Operation(kind=kind, previous_state=previous_state, next_state=final_state))
        )
    return final_state
