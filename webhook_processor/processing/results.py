from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from webhook_processor.datetime_utils import format_iso_utc

IDLE_MESSAGE = "No pending webhooks to process"


@dataclass
class EntryResult:
    event_id: str
    status: str  # 'completed', 'retrying', 'failed'
    retry_count: Optional[int] = None
    next_retry: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Serialize for JSON response, leaving out fields that don't apply"""
        data = {"event_id": self.event_id, "status": self.status}
        if self.retry_count is not None:
            data["retry_count"] = self.retry_count
        if self.next_retry is not None:
            data["next_retry"] = format_iso_utc(self.next_retry)
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class ProcessingSummary:
    results: List[EntryResult] = field(default_factory=list)
    reclaimed: int = 0
    skipped: int = 0  # due entries another runner claimed first
    run_id: Optional[str] = None

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def is_idle(self) -> bool:
        return not self.results and not self.skipped

    def to_dict(self) -> dict:
        if self.is_idle:
            return {"success": True, "message": IDLE_MESSAGE}
        data = {
            "success": True,
            "processed": self.processed,
            "results": [result.to_dict() for result in self.results],
        }
        if self.skipped:
            data["skipped"] = self.skipped
        return data
