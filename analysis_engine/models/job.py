"""
Stock Intel — Batch Job Models
────────────────────────────────
JobProgress is what the batch runner mutates while it works:
`completed` only goes up, `outcomes` only grows.

Job is the pollable record the API serves:
    {job_id, status, progress 0-100, total, completed, errors[]}
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Optional


class JobStatus(str, Enum):
    PENDING   = "pending"
    RUNNING   = "running"
    COMPLETED = "completed"
    FAILED    = "failed"


class OutcomeStatus(str, Enum):
    ANALYZED     = "analyzed"
    SKIPPED_FRESH = "skipped_fresh"     # verdict already newer than the threshold
    INCOMPLETE   = "incomplete"         # mandatory inputs missing, nothing written
    FAILED       = "failed"


@dataclass
class EntityOutcome:
    entity_id: str
    status:    OutcomeStatus
    score:     Optional[int] = None
    reason:    Optional[str] = None

    def to_dict(self) -> dict:
        return {"entity_id": self.entity_id, "status": self.status.value,
                "score": self.score, "reason": self.reason}


@dataclass
class JobProgress:
    total:             int
    completed:         int = 0
    current_entity_id: Optional[str] = None
    errors:            List[str] = field(default_factory=list)
    outcomes:          List[EntityOutcome] = field(default_factory=list)
    stopped:           bool = False

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 100
        return int(self.completed * 100 / self.total)

    def record(self, outcome: EntityOutcome):
        self.outcomes.append(outcome)
        if outcome.status is OutcomeStatus.FAILED:
            self.errors.append(f"{outcome.entity_id}: {outcome.reason or 'Analysis failed'}")
        self.completed += 1

    def to_dict(self) -> dict:
        return {
            "total":             self.total,
            "completed":         self.completed,
            "current_entity_id": self.current_entity_id,
            "errors":            list(self.errors),
            "outcomes":          [o.to_dict() for o in self.outcomes],
            "stopped":           self.stopped,
            "progress":          self.percent,
        }


@dataclass
class Job:
    job_id:           str
    type:             str
    status:           JobStatus = JobStatus.PENDING
    progress:         int = 0
    progress_message: str = "Job created, waiting to start..."
    total:            int = 0
    completed:        int = 0
    errors:           List[str] = field(default_factory=list)
    result:           Optional[dict] = None
    error_message:    Optional[str] = None
    created_at:       str = ""
    started_at:       Optional[str] = None
    completed_at:     Optional[str] = None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "Job":
        kw = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        kw["status"] = JobStatus(kw.get("status", "pending"))
        return cls(**kw)
