from __future__ import annotations

import datetime as dt
from typing import Iterable, Literal

from pydantic import BaseModel, ConfigDict
from toolz import countby

OutcomeStatus = Literal["updated", "no_new_data", "failed"]


class EodRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: dt.date
    open: float | None = None
    high: float | None = None
    low: float | None = None
    close: float | None = None
    adj_close: float | None = None
    volume: int | None = None


class TaskOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    status: OutcomeStatus
    reason: str | None = None
    record: EodRecord | None = None


class RunSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    processed: int = 0
    updated: int = 0
    no_new_data: int = 0
    failed: int = 0

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[TaskOutcome]) -> "RunSummary":
        """Tally task outcomes into a run summary.

        Args:
            outcomes (Iterable[TaskOutcome]): One outcome per processed symbol.

        Returns:
            RunSummary: Counts by outcome status.
        """
        counts = countby(lambda outcome: outcome.status, outcomes)
        return cls(
            processed=sum(counts.values()),
            updated=counts.get("updated", 0),
            no_new_data=counts.get("no_new_data", 0),
            failed=counts.get("failed", 0),
        )

    def describe(self) -> str:
        """Render the single summary line reported at the end of a run."""
        return (
            f"Done. Processed: {self.processed}, Updated: {self.updated}, "
            f"No New Data: {self.no_new_data}, Errors: {self.failed}"
        )
