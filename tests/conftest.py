"""
Shared pytest fixtures for rate change sync tests.

Provides:
- EngineConfig with both stores configured and no inter-matter delay
- Mock cursor / connection in the shape of db.connection.get_connection
- Static Clio credentials (see tests/fakes.py for the Clio double)
"""
import sys
from contextlib import contextmanager
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import EngineConfig
from tests.fakes import API_URL, FIELD_ID, TOKEN_URL, StaticSecrets


@pytest.fixture
def engine_config():
    """EngineConfig with both stores configured and no pause between matters."""
    return EngineConfig(
        crm_field_id=FIELD_ID,
        crm_base_url=API_URL,
        crm_token_url=TOKEN_URL,
        legacy_database_url="postgresql://legacy.test/practice",
        tracking_database_url="postgresql://tracking.test/instructions",
        inter_item_delay=0,
    )


@pytest.fixture
def secrets():
    return StaticSecrets()


@pytest.fixture
def mock_cursor():
    """
    Fixture providing a mock cursor with database methods.

    Supports:
    - execute(sql, params)
    - fetchone()
    - fetchall()
    """
    cursor = MagicMock()
    cursor.fetchone = MagicMock(return_value=None)
    cursor.fetchall = MagicMock(return_value=[])
    cursor.execute = MagicMock(return_value=None)
    cursor.rowcount = 0
    return cursor


@pytest.fixture
def mock_connection(mock_cursor):
    """
    Fixture providing a mock PostgreSQL connection.

    Returns a mock connection that:
    - Creates a mock cursor via cursor() method
    - Supports commit() and rollback() calls
    """
    conn = MagicMock()
    conn.cursor = MagicMock(return_value=mock_cursor)
    conn.commit = MagicMock()
    conn.rollback = MagicMock()
    conn.autocommit = False
    return conn


@pytest.fixture
def mock_get_connection(mock_connection):
    """
    Patch get_connection in the db modules that import it.

    Yields the list of database names requested, in order.
    """
    requested = []

    @contextmanager
    def get_connection_mock(database="tracking", autocommit=False):
        requested.append(database)
        mock_connection.autocommit = autocommit
        yield mock_connection

    with patch('db.notifications.get_connection', side_effect=get_connection_mock), \
         patch('db.matters.get_connection', side_effect=get_connection_mock):
        yield requested


@pytest.fixture
def assert_sql_contains():
    """
    Helper fixture for asserting SQL content in mocked execute calls.

    Usage:
        cursor.execute("SELECT * FROM foo WHERE id = %s", (1,))
        assert_sql_contains(cursor, "SELECT", "FROM foo")
    """
    def _assert(cursor, *keywords):
        """Assert that all keywords appear in any execute call."""
        assert cursor.execute.called, "execute() was not called"
        for call in cursor.execute.call_args_list:
            sql = call[0][0]  # First positional arg is SQL
            if all(kw in sql for kw in keywords):
                return True
        raise AssertionError(
            f"SQL containing all of {keywords} not found in execute calls: "
            f"{[str(c) for c in cursor.execute.call_args_list]}"
        )
    return _assert


@pytest.fixture
def sample_open_matters():
    """Open matters as returned by db.matters.get_open_matters()."""
    return [
        {
            'client_id': 'C1', 'client_name': 'Beta Ltd', 'matter_id': 'M1',
            'display_number': 'BET10001-00001', 'responsible_solicitor': 'Alex Smith',
            'originating_solicitor': 'Jo Brown', 'practice_area': 'Commercial',
            'status': 'Open', 'open_date': '2024-02-01', 'close_date': None,
            'ccl_date': '2024-02-03',
        },
        {
            'client_id': 'C1', 'client_name': 'Beta Ltd', 'matter_id': 'M2',
            'display_number': 'BET10001-00002', 'responsible_solicitor': 'Sam Lee',
            'originating_solicitor': 'Jo Brown', 'practice_area': 'Property',
            'status': 'Open', 'open_date': '2024-06-01', 'close_date': None,
            'ccl_date': None,
        },
        {
            'client_id': 12345, 'client_name': 'alpha & co', 'matter_id': 'M3',
            'display_number': 'ALP12345-00001', 'responsible_solicitor': 'Alex Smith',
            'originating_solicitor': None, 'practice_area': 'Employment',
            'status': 'Open', 'open_date': '2023-09-01', 'close_date': None,
            'ccl_date': None,
        },
        {
            'client_id': 'C3', 'client_name': 'Gamma plc', 'matter_id': 'M5',
            'display_number': 'GAM30003-00001', 'responsible_solicitor': 'Sam Lee',
            'originating_solicitor': 'Sam Lee', 'practice_area': 'Commercial',
            'status': 'Open', 'open_date': '2025-01-10', 'close_date': None,
            'ccl_date': None,
        },
    ]
