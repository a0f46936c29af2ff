"""
Rate Change Notification Actions

Each action first commits the notification state change, then mirrors it
into the "Date of Rate Change" field on the client's Clio matters:

- mark sent            -> field set to the sent date
- mark not applicable  -> field set to 1970-01-01
- undo                 -> record deleted, field cleared

Alongside these: attorney re-sync from Clio into the practice store (one
matter or a streamed batch) and a manual single-matter field update.

The database is authoritative. A Clio failure is reported alongside the
result but never rolls the state change back.

Every action has a plain variant returning one summary dict and a streaming
variant yielding progress events. Streaming variants validate their input
eagerly and return an async iterator that always finishes with a
CompleteEvent.
"""
import logging
from datetime import date, datetime
from typing import Any, AsyncIterator, Callable, Dict, Optional, Sequence

import httpx
import psycopg2
from dateutil.parser import isoparse
from starlette.concurrency import run_in_threadpool

from api_client import ClioClient
from auth import ClioAuth, SecretStore
from batch_sync import BatchResult, BatchRun, MatterSyncManager, StopCheck
from config import EngineConfig, NA_DATE
from db import matters, notifications
from db.notifications import NotificationStatus
from errors import UpstreamError, ValidationError
from field_updater import update_matter_field
from progress import CompleteEvent, ErrorEvent, Event, ProgressEvent

logger = logging.getLogger(__name__)


def parse_sent_date(value) -> date:
    """Accept a date, an ISO date/datetime string, or nothing (today)."""
    if value is None or value == "":
        return date.today()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return isoparse(str(value)).date()
    except ValueError:
        raise ValidationError(f"Invalid sent_date: {value!r}")


def _require(value, message: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(message)
    return str(value).strip()


class RateChangeService:
    """
    Rate change actions for one deployment.

    Usage:
        service = RateChangeService.from_config(get_config())
        summary = await service.mark_sent(2026, "C1", ["M1"], ["100/001"], sent_by="jd")
    """

    def __init__(self, config: EngineConfig, auth: ClioAuth, client: ClioClient, sync_manager: MatterSyncManager = None):
        self.config = config
        self.auth = auth
        self.client = client
        self.sync_manager = sync_manager or MatterSyncManager(config, auth, client)

    @classmethod
    def from_config(cls, config: EngineConfig, secrets: SecretStore = None) -> "RateChangeService":
        http_client = httpx.AsyncClient(timeout=config.request_timeout)
        auth = ClioAuth(config, secrets=secrets, http_client=http_client)
        client = ClioClient(config, http_client=http_client)
        return cls(config, auth, client)

    async def aclose(self) -> None:
        await self.client.aclose()

    # ========== Plain actions ==========

    async def mark_sent(
        self,
        year: int,
        client_id,
        matter_ids: Sequence = None,
        display_numbers: Sequence[str] = None,
        sent_by: str = None,
        sent_date=None,
        **contact,
    ) -> Dict[str, Any]:
        client_id = _require(client_id, "client_id required")
        sent_on = parse_sent_date(sent_date)
        self.config.require_tracking_database()

        await run_in_threadpool(
            notifications.mark_sent, year, client_id, matter_ids, display_numbers,
            sent_by=sent_by, sent_date=sent_on, **contact,
        )
        result = await self.sync_manager.sync_matters(matter_ids or [], display_numbers or [], sent_on.isoformat())
        return self._summary(NotificationStatus.SENT, result)

    async def mark_not_applicable(
        self,
        year: int,
        client_id,
        na_reason: str,
        matter_ids: Sequence = None,
        display_numbers: Sequence[str] = None,
        na_notes: str = None,
        marked_by: str = None,
        **contact,
    ) -> Dict[str, Any]:
        client_id = _require(client_id, "client_id and na_reason required")
        na_reason = _require(na_reason, "client_id and na_reason required")
        self.config.require_tracking_database()

        await run_in_threadpool(
            notifications.mark_not_applicable, year, client_id, na_reason, matter_ids, display_numbers,
            na_notes=na_notes, marked_by=marked_by, **contact,
        )
        result = await self.sync_manager.sync_matters(matter_ids or [], display_numbers or [], NA_DATE)
        return self._summary(NotificationStatus.NOT_APPLICABLE, result)

    async def undo(self, year: int, client_id, matters_to_clear: Sequence[Dict[str, Any]] = None) -> Dict[str, Any]:
        client_id = _require(client_id, "client_id required")
        self.config.require_tracking_database()

        await run_in_threadpool(notifications.revert, year, client_id)
        result = await self.sync_manager.clear_matters(matters_to_clear or [])
        summary = self._summary(NotificationStatus.PENDING, result, structured=True)
        summary["clioCleared"] = result.cleared_summary()
        return summary

    async def mark_escalated(self, year: int, client_id, escalated_by: str = None) -> Dict[str, Any]:
        client_id = _require(client_id, "client_id required")
        self.config.require_tracking_database()

        record = await run_in_threadpool(notifications.mark_escalated, year, client_id, escalated_by)
        return {
            "success": True,
            "client_id": client_id,
            "escalated_at": record.get("escalated_at"),
            "escalated_by": record.get("escalated_by"),
        }

    @staticmethod
    def _summary(status: NotificationStatus, result: BatchResult, structured: bool = False) -> Dict[str, Any]:
        return {
            "success": True,
            "status": status.value,
            "clio_updates": result.to_dict(structured=structured),
        }

    # ========== Streaming actions ==========

    def mark_sent_stream(
        self,
        year: int,
        client_id,
        matter_ids: Sequence = None,
        display_numbers: Sequence[str] = None,
        sent_by: str = None,
        sent_date=None,
        should_stop: StopCheck = None,
        **contact,
    ) -> AsyncIterator[Event]:
        client_id = _require(client_id, "client_id required")
        sent_on = parse_sent_date(sent_date)
        logger.info("mark-sent-stream: client_id=%r, matters=%d, sent_date=%s", client_id, len(matter_ids or []), sent_on)

        def commit():
            return notifications.mark_sent(
                year, client_id, matter_ids, display_numbers,
                sent_by=sent_by, sent_date=sent_on, **contact,
            )

        return self._action_events(
            NotificationStatus.SENT,
            commit,
            "Updating tracking database...",
            lambda: self.sync_manager.update_run(
                matter_ids or [], display_numbers or [], sent_on.isoformat(), should_stop=should_stop
            ),
        )

    def mark_not_applicable_stream(
        self,
        year: int,
        client_id,
        na_reason: str,
        matter_ids: Sequence = None,
        display_numbers: Sequence[str] = None,
        na_notes: str = None,
        marked_by: str = None,
        should_stop: StopCheck = None,
        **contact,
    ) -> AsyncIterator[Event]:
        client_id = _require(client_id, "client_id and na_reason required")
        na_reason = _require(na_reason, "client_id and na_reason required")
        logger.info("mark-na-stream: client_id=%r, reason=%r, matters=%d", client_id, na_reason, len(matter_ids or []))

        def commit():
            return notifications.mark_not_applicable(
                year, client_id, na_reason, matter_ids, display_numbers,
                na_notes=na_notes, marked_by=marked_by, **contact,
            )

        return self._action_events(
            NotificationStatus.NOT_APPLICABLE,
            commit,
            "Updating tracking database...",
            lambda: self.sync_manager.update_run(
                matter_ids or [], display_numbers or [], NA_DATE, should_stop=should_stop
            ),
        )

    def undo_stream(
        self,
        year: int,
        client_id,
        matters_to_clear: Sequence[Dict[str, Any]] = None,
        should_stop: StopCheck = None,
    ) -> AsyncIterator[Event]:
        client_id = _require(client_id, "client_id required")

        return self._action_events(
            NotificationStatus.PENDING,
            lambda: notifications.revert(year, client_id),
            "Removing tracking record...",
            lambda: self.sync_manager.clear_run(matters_to_clear or [], should_stop=should_stop),
            structured=True,
        )

    async def _action_events(
        self,
        status: NotificationStatus,
        commit: Callable[[], Any],
        commit_message: str,
        make_run: Callable[[], BatchRun],
        structured: bool = False,
    ) -> AsyncIterator[Event]:
        run = make_run()

        yield ProgressEvent(step="database", message=commit_message)
        try:
            self.config.require_tracking_database()
            await run_in_threadpool(commit)
        except Exception as e:
            logger.exception("Failed to update tracking record")
            yield ErrorEvent(message=str(e))
            run.result.fail_all(str(e), label="Database error")
            yield CompleteEvent(success=False, status=None, clio_updates=run.result.to_dict(structured=structured))
            return

        yield ProgressEvent(step="database", status="complete", message="Database updated")

        async for event in self._batch_events(run, status.value, structured):
            yield event

    async def _batch_events(
        self,
        run: BatchRun,
        status: Optional[str],
        structured: bool = False,
    ) -> AsyncIterator[Event]:
        """Relay a batch run's events and finish with a CompleteEvent, whatever Clio does."""
        try:
            async for event in run.events():
                yield event
        except Exception as e:
            logger.exception("Clio %s aborted", run.verb)
            run.result.fail_remaining(str(e))
            yield ErrorEvent(message=f"Clio {run.verb} failed: {e}")

        yield CompleteEvent(success=True, status=status, clio_updates=run.result.to_dict(structured=structured))

    # ========== Clio lookups ==========

    async def list_custom_fields(self) -> Dict[str, Any]:
        """Matter custom fields, narrowed to ones that look like the rate change date."""
        access_token = await self.auth.get_access_token()
        result = await self.client.get_matter_custom_fields(access_token)
        if result.status_code == 401:
            self.auth.invalidate()
        if not result.ok:
            raise UpstreamError(f"Failed to get custom fields: {result.error}")

        fields = [f for f in (result.data or {}).get("data") or [] if not f.get("deleted")]
        rate_fields = [
            f for f in fields
            if "rate" in (f.get("name") or "").lower() or "change" in (f.get("name") or "").lower()
        ]
        suggested = next(
            (f for f in rate_fields if "date" in f["name"].lower() and "rate" in f["name"].lower()),
            None,
        )
        return {"all_fields": fields, "rate_change_fields": rate_fields, "suggested_field": suggested}

    async def _lookup_clio_id(self, display_number: str, required: bool) -> Optional[str]:
        if not required and not self.config.legacy_database_url:
            return None
        if required:
            self.config.require_legacy_database()
        try:
            return await run_in_threadpool(matters.get_clio_matter_id, display_number)
        except psycopg2.Error as e:
            if required:
                raise
            logger.warning("SQL lookup for %s failed, falling back to search: %s", display_number, e)
            return None

    async def verify_matter(self, display_number: str) -> Optional[Dict[str, Any]]:
        """Current responsible/originating attorney in Clio, or None if Clio has no such matter."""
        clio_id = await self._lookup_clio_id(display_number, required=False)
        access_token = await self.auth.get_access_token()
        matter = await self.client.find_matter(display_number, access_token, clio_id)
        if not matter:
            return None
        return {
            "display_number": matter.get("display_number"),
            "responsible_attorney": matter.get("responsible_attorney"),
            "originating_attorney": matter.get("originating_attorney"),
            "status": matter.get("status"),
        }

    async def sync_matter_attorneys(self, display_number: str) -> Optional[Dict[str, Any]]:
        """Copy Clio's responsible/originating attorney names into the practice store."""
        clio_id = await self._lookup_clio_id(display_number, required=True)
        access_token = await self.auth.get_access_token()
        matter = await self.client.find_matter(display_number, access_token, clio_id)
        if not matter:
            return None

        responsible = (matter.get("responsible_attorney") or {}).get("name")
        originating = (matter.get("originating_attorney") or {}).get("name")
        rows = await run_in_threadpool(matters.update_matter_solicitors, display_number, responsible, originating)
        return {
            "success": True,
            "display_number": display_number,
            "updated": {
                "responsible_solicitor": responsible,
                "originating_solicitor": originating,
            },
            "rows_affected": rows,
        }

    def sync_attorneys_stream(
        self,
        display_numbers: Sequence[str],
        should_stop: StopCheck = None,
    ) -> AsyncIterator[Event]:
        """Bulk version of sync_matter_attorneys, matched by Clio search only."""
        display_numbers = [str(d).strip() for d in display_numbers or [] if d is not None and str(d).strip()]
        if not display_numbers:
            raise ValidationError("displayNumbers array required")
        self.config.require_legacy_database()
        logger.info("sync-matters: %d display numbers", len(display_numbers))

        async def write_back(display_number, responsible, originating):
            return await run_in_threadpool(matters.update_matter_solicitors, display_number, responsible, originating)

        run = self.sync_manager.attorney_run(display_numbers, write_back, should_stop=should_stop)
        return self._batch_events(run, None)

    # ========== Manual field update ==========

    async def update_matter(self, matter_id, custom_field_id, date_value=None) -> Dict[str, Any]:
        """Set a custom field on one matter directly, outside any notification record."""
        matter_id = _require(matter_id, "matter_id and custom_field_id required")
        custom_field_id = _require(custom_field_id, "matter_id and custom_field_id required")
        try:
            field_id = int(custom_field_id)
        except ValueError:
            raise ValidationError(f"Invalid custom_field_id: {custom_field_id!r}")
        try:
            value = parse_sent_date(date_value).isoformat()
        except ValidationError:
            raise ValidationError(f"Invalid date_value: {date_value!r}")

        access_token = await self.auth.get_access_token()
        outcome = await update_matter_field(self.client, matter_id, matter_id, value, access_token, field_id)
        if outcome.status_code == 401:
            self.auth.invalidate()
        if not outcome.success:
            raise UpstreamError(f"Clio update failed: {outcome.error}")
        if outcome.skipped:
            return {"success": True, "skipped": True, "message": "Matter not in Clio"}
        return {"success": True, "matter_id": matter_id, "custom_field_id": field_id, "value": value}
