"""
Per-matter "Date of Rate Change" field updates.

Both operations look up the matter's existing custom field value first so a
repeated run overwrites the same value instead of appending a second one.
A 404 from Clio means the matter only exists locally (or was deleted
upstream) and is reported as skipped, not failed.

Attorney sync runs the other way: it reads a matter's responsible and
originating attorney from Clio and hands them to a write-back callable.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from api_client import ClioClient

logger = logging.getLogger(__name__)


@dataclass
class MatterSyncOutcome:
    success: bool
    skipped: bool = False
    error: Optional[str] = None
    status_code: Optional[int] = None


async def find_existing_value_id(client: ClioClient, matter_id, access_token: str, field_id: int):
    """
    Return the id of the matter's value for field_id, or None.

    A failed lookup also returns None.
    TODO: retry the lookup before falling through to a create, a transient
    failure here can leave a duplicate value on the matter.
    """
    result = await client.get_matter_custom_field_values(matter_id, access_token)
    if not result.ok:
        logger.warning("Custom field lookup failed for matter %s: %s", matter_id, result.error)
        return None

    values = ((result.data or {}).get("data") or {}).get("custom_field_values") or []
    for value in values:
        custom_field = value.get("custom_field") or {}
        if custom_field.get("id") == field_id:
            return value.get("id")
    return None


def _classify(result, display_label: str, action: str) -> MatterSyncOutcome:
    if result.ok:
        return MatterSyncOutcome(success=True)
    if result.not_found:
        logger.info("Matter %s not in Clio (404) - skipping %s", display_label, action)
        return MatterSyncOutcome(success=True, skipped=True)
    logger.error("Failed to %s matter %s: %s", action, display_label, result.error)
    return MatterSyncOutcome(success=False, error=result.error, status_code=result.status_code)


async def update_matter_field(
    client: ClioClient,
    matter_id,
    display_label: str,
    date_value: str,
    access_token: str,
    field_id: int,
) -> MatterSyncOutcome:
    """Create or overwrite the rate change date on one matter."""
    try:
        existing_value_id = await find_existing_value_id(client, matter_id, access_token, field_id)
        if existing_value_id:
            logger.info("Found existing field value id=%s for matter %s", existing_value_id, display_label)

        value = {"custom_field": {"id": field_id}, "value": date_value}
        if existing_value_id:
            value["id"] = existing_value_id

        result = await client.update_matter_custom_field_values(matter_id, [value], access_token)
        outcome = _classify(result, display_label, "update")
        if outcome.success and not outcome.skipped:
            logger.info(
                "Updated matter %s (%s)%s",
                display_label, matter_id, " [overwrite]" if existing_value_id else "",
            )
        return outcome
    except Exception as e:
        logger.exception("Error updating matter %s", display_label)
        return MatterSyncOutcome(success=False, error=str(e))


async def clear_matter_field(
    client: ClioClient,
    matter_id,
    display_label: str,
    access_token: str,
    field_id: int,
) -> MatterSyncOutcome:
    """Remove the rate change date from one matter. No value means nothing to do."""
    try:
        existing_value_id = await find_existing_value_id(client, matter_id, access_token, field_id)
        if not existing_value_id:
            logger.info("No existing field value for matter %s, skipping clear", display_label)
            return MatterSyncOutcome(success=True)

        value = {"id": existing_value_id, "custom_field": {"id": field_id}, "_destroy": True}
        result = await client.update_matter_custom_field_values(matter_id, [value], access_token)
        outcome = _classify(result, display_label, "clear")
        if outcome.success and not outcome.skipped:
            logger.info("Cleared matter %s (%s)", display_label, matter_id)
        return outcome
    except Exception as e:
        logger.exception("Error clearing matter %s", display_label)
        return MatterSyncOutcome(success=False, error=str(e))


AttorneyWriteBack = Callable[[str, Optional[str], Optional[str]], Awaitable[Any]]


async def sync_attorneys(
    client: ClioClient,
    display_number: str,
    access_token: str,
    write_back: AttorneyWriteBack,
) -> MatterSyncOutcome:
    """Copy one matter's Clio attorneys through write_back. Unknown matters are skipped."""
    try:
        matter = await client.find_matter(display_number, access_token)
        if matter is None:
            logger.info("Matter %s not in Clio - skipping attorney sync", display_number)
            return MatterSyncOutcome(success=True, skipped=True)

        responsible = (matter.get("responsible_attorney") or {}).get("name")
        originating = (matter.get("originating_attorney") or {}).get("name")
        await write_back(display_number, responsible, originating)
        return MatterSyncOutcome(success=True)
    except Exception as e:
        logger.exception("Error syncing attorneys for %s", display_number)
        return MatterSyncOutcome(success=False, error=str(e))
