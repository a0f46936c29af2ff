"""
Progress events for rate change sync runs, and their server-sent event encoding.

A run emits, in order:
    progress*  (matter-start, matter-complete)*  error?  complete

Each event is one `data:` line holding a JSON object whose `type` field
names the variant.
"""
import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional, Union


@dataclass(frozen=True)
class Tally:
    success: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "total": self.total,
        }


@dataclass(frozen=True)
class ProgressEvent:
    """Coarse phase change: database write, authentication, matter updates."""
    type: ClassVar[str] = "progress"
    step: str
    message: str
    status: Optional[str] = None
    total: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {"type": self.type, "step": self.step, "message": self.message}
        if self.status is not None:
            payload["status"] = self.status
        if self.total is not None:
            payload["total"] = self.total
        return payload


@dataclass(frozen=True)
class MatterStartEvent:
    type: ClassVar[str] = "matter-start"
    index: int
    matter_id: Any
    display_number: str
    total: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "index": self.index,
            "matterId": self.matter_id,
            "displayNumber": self.display_number,
            "total": self.total,
        }


@dataclass(frozen=True)
class MatterCompleteEvent:
    type: ClassVar[str] = "matter-complete"
    index: int
    matter_id: Any
    display_number: str
    success: bool
    progress: Tally
    skipped: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "type": self.type,
            "index": self.index,
            "matterId": self.matter_id,
            "displayNumber": self.display_number,
            "success": self.success,
            "progress": self.progress.to_dict(),
        }
        if self.skipped:
            payload["skipped"] = True
            payload["message"] = "Not found in Clio (may be closed)"
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class ErrorEvent:
    """Unrecoverable condition; the run still ends with a CompleteEvent."""
    type: ClassVar[str] = "error"
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "message": self.message}


@dataclass(frozen=True)
class CompleteEvent:
    """Terminal event carrying the final state and CRM summary."""
    type: ClassVar[str] = "complete"
    success: bool
    status: Optional[str]
    clio_updates: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"type": self.type, "success": self.success, "clio_updates": self.clio_updates}
        if self.status is not None:
            payload["status"] = self.status
        return payload


Event = Union[ProgressEvent, MatterStartEvent, MatterCompleteEvent, ErrorEvent, CompleteEvent]

EVENT_TYPES = (ProgressEvent, MatterStartEvent, MatterCompleteEvent, ErrorEvent, CompleteEvent)

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Content-Encoding": "identity",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: Event) -> str:
    """Format a single event as an SSE message."""
    if not isinstance(event, EVENT_TYPES):
        raise TypeError(f"Not a progress event: {event!r}")
    return f"data: {json.dumps(event.to_dict(), default=str)}\n\n"


def sse_preamble(padding_bytes: int = 2048) -> str:
    """Padding comment to push proxies into flushing the stream early."""
    return f": {' ' * max(padding_bytes, 1)}\n\n"
