# casetrack/schemas/repair.py
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class RepairActionType(str, Enum):
    MIGRATED = "migrated"
    MERGED = "merged"
    SKIPPED = "skipped"
    FAILED = "failed"


class RepairAction(BaseModel):
    """One audited decision taken (or previewed) for a single community."""

    action: RepairActionType
    phase: str
    community_id: str
    name: str
    detail: str
    target_id: Optional[str] = None


class RepairReport(BaseModel):
    dry_run: bool
    migrated: int = 0
    merged: int = 0
    skipped: int = 0
    failed: int = 0
    index_ensured: Optional[bool] = None
    index_error: Optional[str] = None
    actions: List[RepairAction] = Field(default_factory=list)

    def record(self, action: RepairAction) -> None:
        self.actions.append(action)
        if action.action == RepairActionType.MIGRATED:
            self.migrated += 1
        elif action.action == RepairActionType.MERGED:
            self.merged += 1
        elif action.action == RepairActionType.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1

    def counts(self) -> dict:
        return {
            "migrated": self.migrated,
            "merged": self.merged,
            "skipped": self.skipped,
            "failed": self.failed,
        }
