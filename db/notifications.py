"""
Rate Change Notifications: PostgreSQL

System of record for each client's rate change notification status, one row
per (rate_change_year, client_id). Every action is a single upsert (or, for
undo, a delete) keyed on that pair and is committed before any Clio update
is attempted.

Sent and not-applicable are mutually exclusive: marking sent clears
na_reason/na_notes, marking not applicable clears sent_date. Contact fields
are only overwritten when a new non-empty value is supplied.
"""
import json
import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from db.connection import get_connection, TRACKING
from errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    NOT_APPLICABLE = "not_applicable"


# ============================================================
# Schema
# ============================================================

NOTIFICATIONS_SCHEMA = """
CREATE TABLE IF NOT EXISTS rate_change_notifications (
    id SERIAL PRIMARY KEY,
    rate_change_year INTEGER NOT NULL,
    effective_date DATE NOT NULL,
    client_id VARCHAR(64) NOT NULL,
    client_first_name TEXT,
    client_last_name TEXT,
    client_email TEXT,
    matter_ids TEXT DEFAULT '[]',
    display_numbers TEXT DEFAULT '[]',
    status VARCHAR(20) NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'sent', 'not_applicable')),
    sent_date DATE,
    sent_by TEXT,
    na_reason TEXT,
    na_notes TEXT,
    escalated_at TIMESTAMP,
    escalated_by TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(rate_change_year, client_id)
);
CREATE INDEX IF NOT EXISTS idx_rcn_year ON rate_change_notifications(rate_change_year);
"""


def ensure_notification_tables():
    """Create the notifications table if it doesn't exist."""
    with get_connection(TRACKING) as conn:
        cur = conn.cursor()
        cur.execute(NOTIFICATIONS_SCHEMA)
    logger.info("Rate change notification table ensured")


# ============================================================
# Helpers
# ============================================================

def effective_date_for(year: int) -> date:
    return date(int(year), 1, 1)


def _clean(value: Optional[str]) -> Optional[str]:
    """Treat empty strings as absent so COALESCE keeps the stored value."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _require_client_id(client_id) -> str:
    client_id = _clean(client_id)
    if not client_id:
        raise ValidationError("client_id required")
    return client_id


def _decode_list(raw) -> List:
    if raw is None or raw == "":
        return []
    if isinstance(raw, list):
        return raw
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Could not decode stored id list: %r", raw)
        return []
    return value if isinstance(value, list) else []


def _row_to_record(row) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    record = dict(row)
    record["matter_ids"] = _decode_list(record.get("matter_ids"))
    record["display_numbers"] = _decode_list(record.get("display_numbers"))
    return record


def _upsert(
    insert_columns: Sequence[str],
    insert_values: Sequence[Any],
    update_sql: str,
    expected_updated_at: Optional[datetime],
) -> Dict[str, Any]:
    """INSERT ... ON CONFLICT DO UPDATE, optionally guarded by updated_at."""
    placeholders = ", ".join(["%s"] * len(insert_values))
    params = list(insert_values)
    guard = ""
    if expected_updated_at is not None:
        guard = "WHERE rate_change_notifications.updated_at = %s"
        params.append(expected_updated_at)

    with get_connection(TRACKING) as conn:
        cur = conn.cursor()
        cur.execute(
            f"""
            INSERT INTO rate_change_notifications ({", ".join(insert_columns)}, updated_at)
            VALUES ({placeholders}, CURRENT_TIMESTAMP)
            ON CONFLICT (rate_change_year, client_id) DO UPDATE SET
                {update_sql},
                updated_at = CURRENT_TIMESTAMP
            {guard}
            RETURNING *
            """,
            params,
        )
        row = cur.fetchone()

    if row is None:
        raise ConflictError("Notification was changed by someone else; reload and try again")
    return _row_to_record(row)


CONTACT_MERGE_SQL = """
                client_first_name = COALESCE(EXCLUDED.client_first_name, rate_change_notifications.client_first_name),
                client_last_name = COALESCE(EXCLUDED.client_last_name, rate_change_notifications.client_last_name),
                client_email = COALESCE(EXCLUDED.client_email, rate_change_notifications.client_email),
                matter_ids = EXCLUDED.matter_ids,
                display_numbers = EXCLUDED.display_numbers"""


# ============================================================
# State transitions
# ============================================================

def mark_sent(
    year: int,
    client_id,
    matter_ids: Sequence = None,
    display_numbers: Sequence[str] = None,
    sent_by: str = None,
    sent_date: date = None,
    client_first_name: str = None,
    client_last_name: str = None,
    client_email: str = None,
    expected_updated_at: datetime = None,
) -> Dict[str, Any]:
    """Record that the rate change notice went out to this client."""
    client_id = _require_client_id(client_id)
    sent_date = sent_date or date.today()

    record = _upsert(
        insert_columns=[
            "rate_change_year", "effective_date", "client_id", "client_first_name",
            "client_last_name", "client_email", "matter_ids", "display_numbers",
            "status", "sent_date", "sent_by",
        ],
        insert_values=[
            int(year), effective_date_for(year), client_id, _clean(client_first_name),
            _clean(client_last_name), _clean(client_email), json.dumps(list(matter_ids or [])),
            json.dumps(list(display_numbers or [])), NotificationStatus.SENT.value,
            sent_date, _clean(sent_by),
        ],
        update_sql=f"""status = EXCLUDED.status,
                sent_date = EXCLUDED.sent_date,
                sent_by = EXCLUDED.sent_by,{CONTACT_MERGE_SQL},
                na_reason = NULL,
                na_notes = NULL""",
        expected_updated_at=expected_updated_at,
    )
    logger.info("Marked client %s sent for %s (sent_date=%s)", client_id, year, sent_date)
    return record


def mark_not_applicable(
    year: int,
    client_id,
    na_reason: str,
    matter_ids: Sequence = None,
    display_numbers: Sequence[str] = None,
    na_notes: str = None,
    marked_by: str = None,
    client_first_name: str = None,
    client_last_name: str = None,
    client_email: str = None,
    expected_updated_at: datetime = None,
) -> Dict[str, Any]:
    """Record that no rate change notice is needed for this client."""
    client_id = _require_client_id(client_id)
    na_reason = _clean(na_reason)
    if not na_reason:
        raise ValidationError("client_id and na_reason required")

    record = _upsert(
        insert_columns=[
            "rate_change_year", "effective_date", "client_id", "client_first_name",
            "client_last_name", "client_email", "matter_ids", "display_numbers",
            "status", "na_reason", "na_notes", "sent_by",
        ],
        insert_values=[
            int(year), effective_date_for(year), client_id, _clean(client_first_name),
            _clean(client_last_name), _clean(client_email), json.dumps(list(matter_ids or [])),
            json.dumps(list(display_numbers or [])), NotificationStatus.NOT_APPLICABLE.value,
            na_reason, _clean(na_notes), _clean(marked_by),
        ],
        update_sql=f"""status = EXCLUDED.status,
                na_reason = EXCLUDED.na_reason,
                na_notes = EXCLUDED.na_notes,
                sent_by = EXCLUDED.sent_by,{CONTACT_MERGE_SQL},
                sent_date = NULL""",
        expected_updated_at=expected_updated_at,
    )
    logger.info("Marked client %s not applicable for %s (reason=%s)", client_id, year, na_reason)
    return record


def mark_escalated(year: int, client_id, escalated_by: str = None) -> Dict[str, Any]:
    """
    Record an escalation. Status is left alone; a client with no record yet
    gets a pending one.
    """
    client_id = _require_client_id(client_id)
    escalated_at = datetime.now()

    with get_connection(TRACKING) as conn:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO rate_change_notifications
                (rate_change_year, effective_date, client_id, status,
                 escalated_at, escalated_by, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s, CURRENT_TIMESTAMP)
            ON CONFLICT (rate_change_year, client_id) DO UPDATE SET
                escalated_at = EXCLUDED.escalated_at,
                escalated_by = EXCLUDED.escalated_by,
                updated_at = CURRENT_TIMESTAMP
            RETURNING *
            """,
            (int(year), effective_date_for(year), client_id, NotificationStatus.PENDING.value,
             escalated_at, _clean(escalated_by)),
        )
        row = cur.fetchone()

    logger.info("Marked client %s escalated for %s", client_id, year)
    return _row_to_record(row)


def revert(year: int, client_id) -> bool:
    """
    Delete the record, returning the client to implicit pending.

    Escalation history goes with it.
    """
    client_id = _require_client_id(client_id)
    with get_connection(TRACKING) as conn:
        cur = conn.cursor()
        cur.execute(
            """
            DELETE FROM rate_change_notifications
            WHERE rate_change_year = %s AND client_id = %s
            RETURNING id
            """,
            (int(year), client_id),
        )
        deleted = cur.fetchone() is not None

    logger.info("Reverted client %s for %s (record %s)", client_id, year, "deleted" if deleted else "absent")
    return deleted


# ============================================================
# Reads
# ============================================================

def get_notification(year: int, client_id) -> Optional[Dict[str, Any]]:
    with get_connection(TRACKING) as conn:
        cur = conn.cursor()
        cur.execute(
            "SELECT * FROM rate_change_notifications WHERE rate_change_year = %s AND client_id = %s",
            (int(year), _require_client_id(client_id)),
        )
        return _row_to_record(cur.fetchone())


def get_notifications_for_year(year: int) -> List[Dict[str, Any]]:
    with get_connection(TRACKING) as conn:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT client_id, client_first_name, client_last_name, client_email,
                   matter_ids, display_numbers, status, sent_date, sent_by,
                   escalated_at, escalated_by, na_reason, na_notes, updated_at
            FROM rate_change_notifications
            WHERE rate_change_year = %s
            """,
            (int(year),),
        )
        return [_row_to_record(row) for row in cur.fetchall()]
