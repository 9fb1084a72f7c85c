"""Typed results returned by the bulk embedding trigger functions."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Optional, Union


@dataclass
class BulkEmbedResult:
    """Outcome of starting a bulk embedding run.

    On conflict, `run_id` is the run that is already active for the pool.
    """

    run_id: Optional[int]
    status: str
    conflict: bool = False
    message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None and v is not False}


@dataclass
class RetryResult:
    batch_id: int
    new_batch_id: int
    run_id: int
    status: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RetryError:
    error: str
    conflict: bool = False
    not_found: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


RetryOutcome = Union[RetryResult, RetryError]
