"""
Practice matters: legacy PostgreSQL store

Read access to the firm's matters table, whose column names are kept as
they were imported ("Client ID", "Display Number", ...). Client ids arrive
as numbers or strings depending on how a row was loaded, so every lookup
compares them as trimmed text.
"""
import logging
from typing import Dict, Iterable, List, Optional

from db.connection import get_connection, LEGACY

logger = logging.getLogger(__name__)

MATTER_COLUMNS = """
    "Client ID" AS client_id,
    "Client Name" AS client_name,
    "Unique ID" AS matter_id,
    "Display Number" AS display_number,
    "Responsible Solicitor" AS responsible_solicitor,
    "Originating Solicitor" AS originating_solicitor,
    "Practice Area" AS practice_area,
    "Status" AS status,
    "Open Date" AS open_date,
    "Close Date" AS close_date,
    "CCL_date" AS ccl_date
"""


def get_open_matters() -> List[Dict]:
    """All matters with Status = 'Open', ordered by client name then display number."""
    with get_connection(LEGACY) as conn:
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {MATTER_COLUMNS}
            FROM matters
            WHERE "Status" = 'Open'
            ORDER BY "Client Name", "Display Number"
            """
        )
        return [dict(row) for row in cur.fetchall()]


def get_matters_for_clients(client_ids: Iterable[str]) -> List[Dict]:
    """Every matter (any status) belonging to the given clients."""
    client_ids = sorted({str(c).strip() for c in client_ids if c is not None and str(c).strip()})
    if not client_ids:
        return []

    with get_connection(LEGACY) as conn:
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT {MATTER_COLUMNS}
            FROM matters
            WHERE TRIM(CAST("Client ID" AS TEXT)) = ANY(%s)
            ORDER BY "Client ID", "Display Number"
            """,
            (client_ids,),
        )
        return [dict(row) for row in cur.fetchall()]


def get_clio_matter_id(display_number: str) -> Optional[str]:
    """Clio matter id ("Unique ID") for a display number, if the matter is known locally."""
    with get_connection(LEGACY) as conn:
        cur = conn.cursor()
        cur.execute(
            'SELECT "Unique ID" AS clio_id FROM matters WHERE "Display Number" = %s',
            (display_number,),
        )
        row = cur.fetchone()
        return row["clio_id"] if row else None


def update_matter_solicitors(display_number: str, responsible: Optional[str], originating: Optional[str]) -> int:
    """Overwrite the responsible/originating solicitor names. Returns rows affected."""
    with get_connection(LEGACY) as conn:
        cur = conn.cursor()
        cur.execute(
            """
            UPDATE matters
            SET "Responsible Solicitor" = %s,
                "Originating Solicitor" = %s
            WHERE "Display Number" = %s
            """,
            (responsible, originating, display_number),
        )
        rows = cur.rowcount or 0

    logger.info(
        "Synced %s: responsible=%r, originating=%r (%d rows)",
        display_number, responsible, originating, rows,
    )
    return rows
