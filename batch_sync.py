"""
Rate Change Batch Sync

Mirrors the rate change date for every matter of one client into Clio.

Matters are processed strictly one after another, in input order, with a
short pause between calls to respect the Clio rate limit. One access token
is fetched per batch; if that fails every matter in the batch is counted as
failed. Individual matter failures are recorded and the batch moves on,
failed matters are only retried by running the whole action again.
A 401 on one matter discards the cached token and the next matter fetches
a fresh one.

The same loop also drives the bulk attorney re-sync, which reads each
matter from Clio by display number and writes the attorneys back locally.

Usage:
    manager = MatterSyncManager(config, auth, client)
    run = manager.update_run(matter_ids, display_numbers, "2026-01-01")
    async for event in run.events():
        ...
    run.result.to_dict()
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from api_client import ClioClient
from auth import ClioAuth
from config import EngineConfig
from errors import AuthError
from field_updater import AttorneyWriteBack, MatterSyncOutcome, clear_matter_field, sync_attorneys, update_matter_field
from progress import Event, ErrorEvent, MatterCompleteEvent, MatterStartEvent, ProgressEvent, Tally

logger = logging.getLogger(__name__)

StopCheck = Callable[[], Awaitable[bool]]


@dataclass
class BatchResult:
    """Counts and per-matter errors for one batch run."""
    total: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[Tuple[str, str]] = field(default_factory=list)

    def record(self, label: str, outcome: MatterSyncOutcome) -> None:
        if outcome.success and outcome.skipped:
            self.skipped += 1
        elif outcome.success:
            self.success += 1
        else:
            self.failed += 1
            self.errors.append((label, outcome.error or "Unknown error"))

    def fail_all(self, reason: str, label: str = "Auth error") -> None:
        """Mark every matter as failed with a single batch-level error."""
        self.success = 0
        self.skipped = 0
        self.failed = self.total
        self.errors = [(label, reason)]

    def fail_remaining(self, reason: str, label: str = "Clio error") -> None:
        """Count every matter without an outcome yet as failed."""
        self.failed = self.total - self.success - self.skipped
        self.errors.append((label, reason))

    def tally(self) -> Tally:
        return Tally(success=self.success, failed=self.failed, skipped=self.skipped, total=self.total)

    def to_dict(self, structured: bool = False) -> Dict[str, Any]:
        """
        Summary for API responses.

        structured=True renders errors as {"display_number", "error"} objects
        (undo responses); otherwise as "label: error" strings.
        """
        if structured:
            errors = [{"display_number": label, "error": error} for label, error in self.errors]
        else:
            errors = [f"{label}: {error}" for label, error in self.errors]
        return {
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": errors,
        }

    def cleared_summary(self) -> Dict[str, Any]:
        """Undo summary in the older {succeeded, failed, errors} shape; skips count as succeeded."""
        return {
            "succeeded": self.success + self.skipped,
            "failed": self.failed,
            "errors": self.to_dict(structured=True)["errors"],
        }


class BatchRun:
    """One pass over a list of matters. Iterate events(), then read result."""

    def __init__(
        self,
        manager: "MatterSyncManager",
        items: List[Tuple[Any, str]],
        operation: Callable[..., Awaitable[MatterSyncOutcome]],
        verb: str,
        should_stop: Optional[StopCheck] = None,
        description: str = "Updating {count} in Clio...",
    ):
        self.manager = manager
        self.items = items
        self.operation = operation
        self.verb = verb
        self.should_stop = should_stop
        self.description = description
        self.result = BatchResult(total=len(items))
        self.cancelled = False

    async def events(self) -> AsyncIterator[Event]:
        if not self.items:
            logger.info("No matter IDs to %s", self.verb)
            return

        total = len(self.items)
        yield ProgressEvent(step="auth", message="Authenticating with Clio...")
        try:
            access_token = await self.manager.auth.get_access_token()
        except AuthError as e:
            logger.error("Clio auth error: %s", e)
            self.result.fail_all(str(e))
            yield ErrorEvent(message=f"Clio auth failed: {e}")
            return

        yield ProgressEvent(
            step="clio",
            message=self.description.format(count=f"{total} matter{'s' if total != 1 else ''}"),
            total=total,
        )

        for index, (matter_id, label) in enumerate(self.items):
            if self.should_stop is not None and await self.should_stop():
                self.cancelled = True
                logger.warning("Stopped %s after %d of %d matters", self.verb, index, total)
                return

            if access_token is None:
                access_token = await self.manager.auth.get_access_token()

            yield MatterStartEvent(index=index, matter_id=matter_id, display_number=label, total=total)

            outcome = await self.operation(matter_id, label, access_token)
            self.result.record(label, outcome)
            if outcome.status_code == 401:
                self.manager.auth.invalidate()
                access_token = None

            yield MatterCompleteEvent(
                index=index,
                matter_id=matter_id,
                display_number=label,
                success=outcome.success,
                skipped=outcome.skipped,
                error=outcome.error,
                progress=self.result.tally(),
            )

            if index < total - 1:
                await self.manager.sleep(self.manager.config.inter_item_delay)

        logger.info(
            "Clio %s results: %d succeeded, %d skipped, %d failed",
            self.verb, self.result.success, self.result.skipped, self.result.failed,
        )

    async def run(self) -> BatchResult:
        """Process every matter, discarding the progress events."""
        try:
            async for _ in self.events():
                pass
        except Exception as e:
            logger.exception("Clio %s aborted", self.verb)
            self.result.fail_remaining(str(e))
        return self.result


class MatterSyncManager:
    """Runs field updates and clears across a client's matters."""

    def __init__(
        self,
        config: EngineConfig,
        auth: ClioAuth,
        client: ClioClient,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self.auth = auth
        self.client = client
        self.sleep = sleep

    @staticmethod
    def _label_items(matter_ids: Sequence, display_labels: Sequence[str] = None) -> List[Tuple[Any, str]]:
        labels = list(display_labels or [])
        items = []
        for i, matter_id in enumerate(matter_ids or []):
            label = labels[i] if i < len(labels) and labels[i] else str(matter_id)
            items.append((matter_id, label))
        return items

    def update_run(
        self,
        matter_ids: Sequence,
        display_labels: Sequence[str],
        date_value: str,
        field_id: int = None,
        should_stop: Optional[StopCheck] = None,
    ) -> BatchRun:
        field_id = field_id or self.config.crm_field_id

        async def operation(matter_id, label, access_token):
            return await update_matter_field(self.client, matter_id, label, date_value, access_token, field_id)

        return BatchRun(self, self._label_items(matter_ids, display_labels), operation, "update", should_stop)

    def clear_run(
        self,
        matters: Sequence[Dict[str, Any]],
        field_id: int = None,
        should_stop: Optional[StopCheck] = None,
    ) -> BatchRun:
        """Clear the field on [{"matter_id", "display_number"}, ...]."""
        field_id = field_id or self.config.crm_field_id
        matters = list(matters or [])

        async def operation(matter_id, label, access_token):
            return await clear_matter_field(self.client, matter_id, label, access_token, field_id)

        items = self._label_items(
            [m.get("matter_id") for m in matters],
            [m.get("display_number") for m in matters],
        )
        return BatchRun(self, items, operation, "clear", should_stop)

    def attorney_run(
        self,
        display_numbers: Sequence[str],
        write_back: AttorneyWriteBack,
        should_stop: Optional[StopCheck] = None,
    ) -> BatchRun:
        """Read each matter's attorneys from Clio (by display number) and pass them to write_back."""

        async def operation(display_number, label, access_token):
            return await sync_attorneys(self.client, display_number, access_token, write_back)

        items = self._label_items(display_numbers, display_numbers)
        return BatchRun(
            self, items, operation, "attorney sync", should_stop,
            description="Syncing attorneys for {count} from Clio...",
        )

    async def sync_matters(
        self,
        matter_ids: Sequence,
        display_labels: Sequence[str],
        date_value: str,
        field_id: int = None,
    ) -> BatchResult:
        return await self.update_run(matter_ids, display_labels, date_value, field_id).run()

    async def clear_matters(self, matters: Sequence[Dict[str, Any]], field_id: int = None) -> BatchResult:
        return await self.clear_run(matters, field_id).run()
