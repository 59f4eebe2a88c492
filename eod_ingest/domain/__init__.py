from .schemas import EodRecord, OutcomeStatus, RunSummary, TaskOutcome

__all__ = [
    "EodRecord",
    "OutcomeStatus",
    "RunSummary",
    "TaskOutcome",
]
