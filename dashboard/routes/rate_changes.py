"""
Rate Change Notification API Routes

JSON endpoints for:
- Year view: clients with open matters and their notification status
- Actions: mark sent, mark not applicable, undo (each with an SSE variant),
  mark escalated
- Clio helpers: custom field discovery, matter attorney verify/sync (single
  and streamed bulk), manual field update on one matter
"""
from datetime import datetime
from typing import AsyncIterator, List, Optional, Union

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool

from dashboard.dependencies import get_dashboard_data, get_rate_change_service
from dashboard.models import DashboardData
from progress import STREAM_HEADERS, Event, format_sse, sse_preamble
from rate_changes import RateChangeService

router = APIRouter(prefix="/rate-changes", tags=["rate-changes"])

MatterId = Union[int, str]


# ---------------------------------------------------------------------------
# Pydantic Models
# ---------------------------------------------------------------------------

class ClientContact(BaseModel):
    client_id: Optional[MatterId] = None
    client_first_name: Optional[str] = None
    client_last_name: Optional[str] = None
    client_email: Optional[str] = None
    matter_ids: List[MatterId] = []
    display_numbers: List[Optional[str]] = []
    expected_updated_at: Optional[datetime] = None

    def contact_fields(self) -> dict:
        return {
            "client_first_name": self.client_first_name,
            "client_last_name": self.client_last_name,
            "client_email": self.client_email,
            "expected_updated_at": self.expected_updated_at,
        }


class MarkSentRequest(ClientContact):
    sent_by: Optional[str] = None
    sent_date: Optional[str] = None


class MarkNotApplicableRequest(ClientContact):
    na_reason: Optional[str] = None
    na_notes: Optional[str] = None
    marked_by: Optional[str] = None


class UndoMatter(BaseModel):
    matter_id: MatterId
    display_number: Optional[str] = None


class UndoRequest(BaseModel):
    client_id: Optional[MatterId] = None
    matters: List[UndoMatter] = []

    def matters_to_clear(self) -> List[dict]:
        return [m.model_dump() for m in self.matters]


class MarkEscalatedRequest(BaseModel):
    client_id: Optional[MatterId] = None
    escalated_by: Optional[str] = None


class SyncMattersRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    display_numbers: List[Optional[str]] = Field(default=[], alias="displayNumbers")


class UpdateMatterRequest(BaseModel):
    matter_id: Optional[MatterId] = None
    custom_field_id: Optional[MatterId] = None
    date_value: Optional[str] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _sse_body(events: AsyncIterator[Event]) -> AsyncIterator[str]:
    yield sse_preamble()
    try:
        async for event in events:
            yield format_sse(event)
    finally:
        await events.aclose()


def _stream(events: AsyncIterator[Event]) -> StreamingResponse:
    return StreamingResponse(
        _sse_body(events),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
    )


# ---------------------------------------------------------------------------
# Clio helpers (declared before /{year})
# ---------------------------------------------------------------------------

@router.get("/clio/custom-fields")
@router.get("/crm/custom-fields")
async def list_custom_fields(service: RateChangeService = Depends(get_rate_change_service)):
    """Find the "Date of Rate Change" field among the Clio matter custom fields."""
    return await service.list_custom_fields()


@router.get("/verify-matter/{display_number:path}")
async def verify_matter(display_number: str, service: RateChangeService = Depends(get_rate_change_service)):
    """Compare a matter's attorneys in Clio against the practice database."""
    matter = await service.verify_matter(display_number)
    if matter is None:
        return JSONResponse(
            {"error": "Matter not found in Clio", "displayNumber": display_number},
            status_code=404,
        )
    return matter


@router.post("/sync-matter/{display_number:path}")
async def sync_matter(display_number: str, service: RateChangeService = Depends(get_rate_change_service)):
    """Copy a matter's Clio attorneys into the practice database."""
    result = await service.sync_matter_attorneys(display_number)
    if result is None:
        return JSONResponse(
            {"error": "Matter not found in Clio", "displayNumber": display_number},
            status_code=404,
        )
    return result


@router.post("/sync-matters")
async def sync_matters(
    body: SyncMattersRequest,
    request: Request,
    service: RateChangeService = Depends(get_rate_change_service),
):
    """Stream a Clio-to-practice-database attorney sync across many matters."""
    events = service.sync_attorneys_stream(body.display_numbers, should_stop=request.is_disconnected)
    return _stream(events)


@router.post("/clio/update-matter")
async def update_matter(body: UpdateMatterRequest, service: RateChangeService = Depends(get_rate_change_service)):
    """Set a custom field on a single Clio matter; a matter Clio doesn't know is skipped."""
    return await service.update_matter(body.matter_id, body.custom_field_id, body.date_value)


# ---------------------------------------------------------------------------
# Year view
# ---------------------------------------------------------------------------

@router.get("/{year}")
async def get_year_view(
    year: int,
    status: Optional[str] = Query(default=None),
    solicitor: Optional[str] = Query(default=None),
    data: DashboardData = Depends(get_dashboard_data),
):
    """All clients with open matters and their notification status for the year."""
    return await run_in_threadpool(data.get_year_view, year, status, solicitor)


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

@router.post("/{year}/mark-sent")
async def mark_sent(year: int, body: MarkSentRequest, service: RateChangeService = Depends(get_rate_change_service)):
    return await service.mark_sent(
        year,
        body.client_id,
        body.matter_ids,
        body.display_numbers,
        sent_by=body.sent_by,
        sent_date=body.sent_date,
        **body.contact_fields(),
    )


@router.post("/{year}/mark-sent-stream")
async def mark_sent_stream(
    year: int,
    body: MarkSentRequest,
    request: Request,
    service: RateChangeService = Depends(get_rate_change_service),
):
    events = service.mark_sent_stream(
        year,
        body.client_id,
        body.matter_ids,
        body.display_numbers,
        sent_by=body.sent_by,
        sent_date=body.sent_date,
        should_stop=request.is_disconnected,
        **body.contact_fields(),
    )
    return _stream(events)


@router.post("/{year}/mark-na")
async def mark_not_applicable(
    year: int,
    body: MarkNotApplicableRequest,
    service: RateChangeService = Depends(get_rate_change_service),
):
    return await service.mark_not_applicable(
        year,
        body.client_id,
        body.na_reason,
        body.matter_ids,
        body.display_numbers,
        na_notes=body.na_notes,
        marked_by=body.marked_by,
        **body.contact_fields(),
    )


@router.post("/{year}/mark-na-stream")
async def mark_not_applicable_stream(
    year: int,
    body: MarkNotApplicableRequest,
    request: Request,
    service: RateChangeService = Depends(get_rate_change_service),
):
    events = service.mark_not_applicable_stream(
        year,
        body.client_id,
        body.na_reason,
        body.matter_ids,
        body.display_numbers,
        na_notes=body.na_notes,
        marked_by=body.marked_by,
        should_stop=request.is_disconnected,
        **body.contact_fields(),
    )
    return _stream(events)


@router.post("/{year}/undo")
async def undo(year: int, body: UndoRequest, service: RateChangeService = Depends(get_rate_change_service)):
    return await service.undo(year, body.client_id, body.matters_to_clear())


@router.post("/{year}/undo-stream")
async def undo_stream(
    year: int,
    body: UndoRequest,
    request: Request,
    service: RateChangeService = Depends(get_rate_change_service),
):
    events = service.undo_stream(
        year, body.client_id, body.matters_to_clear(), should_stop=request.is_disconnected
    )
    return _stream(events)


@router.post("/{year}/mark-escalated")
async def mark_escalated(
    year: int,
    body: MarkEscalatedRequest,
    service: RateChangeService = Depends(get_rate_change_service),
):
    return await service.mark_escalated(year, body.client_id, body.escalated_by)
