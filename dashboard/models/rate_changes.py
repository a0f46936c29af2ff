"""
Rate change year view.

Joins clients with open matters (legacy store) to their notification record
for the year (tracking store). The join happens at read time and relies on
both sides normalizing client ids the same way.
"""
import logging
from typing import Any, Dict, Iterable, Optional

from db.matters import get_matters_for_clients, get_open_matters
from db.notifications import NotificationStatus, get_notifications_for_year

logger = logging.getLogger(__name__)

TRACKING_FIELDS = (
    "client_first_name",
    "client_last_name",
    "client_email",
    "sent_date",
    "sent_by",
    "escalated_at",
    "escalated_by",
    "na_reason",
    "na_notes",
    "updated_at",
)


def normalize_client_id(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _matter_entry(m: Dict, status: str) -> Dict[str, Any]:
    entry = {
        "matter_id": m.get("matter_id"),
        "display_number": m.get("display_number"),
        "responsible_solicitor": m.get("responsible_solicitor"),
        "originating_solicitor": m.get("originating_solicitor"),
        "practice_area": m.get("practice_area"),
        "status": status,
        "open_date": m.get("open_date"),
    }
    if status == "Open":
        entry["ccl_date"] = m.get("ccl_date")
    else:
        entry["close_date"] = m.get("close_date")
    return entry


def assemble_year_view(
    year: int,
    open_matters: Iterable[Dict],
    all_matters: Iterable[Dict],
    notifications: Iterable[Dict],
    status: str = None,
    solicitor: str = None,
) -> Dict[str, Any]:
    """
    Build {year, stats, clients} from the three source row sets.

    Only clients with at least one open matter appear; their closed matters
    are attached for context. Clients without a record are pending.
    """
    tracking_by_client = {}
    for record in notifications:
        client_id = normalize_client_id(record.get("client_id"))
        if client_id:
            tracking_by_client[client_id] = record

    clients: Dict[str, Dict[str, Any]] = {}
    for m in open_matters:
        client_id = normalize_client_id(m.get("client_id"))
        if not client_id:
            continue
        client = clients.setdefault(client_id, {
            "client_id": client_id,
            "client_name": m.get("client_name"),
            "open_matters": [],
            "closed_matters": [],
            "responsible_solicitors": [],
            "originating_solicitors": [],
        })
        client["open_matters"].append(_matter_entry(m, "Open"))
        for key, solicitor_name in (
            ("responsible_solicitors", m.get("responsible_solicitor")),
            ("originating_solicitors", m.get("originating_solicitor")),
        ):
            if solicitor_name and solicitor_name not in client[key]:
                client[key].append(solicitor_name)

    for m in all_matters:
        client_id = normalize_client_id(m.get("client_id"))
        if client_id in clients and m.get("status") == "Closed":
            clients[client_id]["closed_matters"].append(_matter_entry(m, "Closed"))

    results = []
    for client_id, client in clients.items():
        tracking = tracking_by_client.get(client_id) or {}
        record = dict(client)
        record["status"] = tracking.get("status") or NotificationStatus.PENDING.value
        for key in TRACKING_FIELDS:
            record[key] = tracking.get(key)
        record["ccl_confirmed"] = any(om.get("ccl_date") for om in client["open_matters"])

        if status and record["status"] != status:
            continue
        if solicitor and solicitor not in record["responsible_solicitors"]:
            continue
        results.append(record)

    # Pending first, then by client name
    results.sort(key=lambda r: (r["client_name"] or "").casefold())
    results.sort(key=lambda r: r["status"] != NotificationStatus.PENDING.value)

    stats = {
        "total": len(results),
        "pending": sum(1 for r in results if r["status"] == NotificationStatus.PENDING.value),
        "sent": sum(1 for r in results if r["status"] == NotificationStatus.SENT.value),
        "not_applicable": sum(1 for r in results if r["status"] == NotificationStatus.NOT_APPLICABLE.value),
    }

    logger.info(
        "Year %s: %d tracking records, %d clients with open matters, stats=%s",
        year, len(tracking_by_client), len(clients), stats,
    )
    return {"year": int(year), "stats": stats, "clients": results}


class RateChangeDataMixin:
    """Rate change notification view for the dashboard."""

    def get_year_view(self, year: int, status: str = None, solicitor: str = None) -> Dict[str, Any]:
        self.require_databases()
        open_matters = get_open_matters()
        client_ids = {normalize_client_id(m.get("client_id")) for m in open_matters}
        client_ids.discard(None)
        all_matters = get_matters_for_clients(client_ids)
        notifications = get_notifications_for_year(year)
        return assemble_year_view(year, open_matters, all_matters, notifications, status, solicitor)
