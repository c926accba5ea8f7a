"""Operation descriptors handed to middleware and error callbacks."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict


class OperationKind(StrEnum):
    INITIALIZE = "initialize"
    UPDATE = "update"
    SET = "set"
    PATCH = "patch"
    RESET = "reset"
    BATCH = "batch"


class Operation(BaseModel):
    """A single mutating call, as seen by each middleware stage.

    ``previous_state`` is the committed state before the call and
    ``next_state`` is the candidate produced by the call (or by the
    preceding stage). Both are passed by reference: a stage may return
    ``next_state`` unchanged or build a new mapping from it.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: OperationKind
    previous_state: Any
    next_state: Any


class ErrorContext(BaseModel):
    """Where a contained failure happened, passed to ``on_error``."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    method: str
    state: Any
