from unittest.mock import AsyncMock, MagicMock, patch

import psycopg
import pytest

from app.db.helpers import DatabaseError, fetch_all


def _connection(cursor):
    conn = MagicMock()
    conn.cursor.return_value.__aenter__.return_value = cursor
    checkout = MagicMock()
    checkout.__aenter__.return_value = conn
    return checkout


@pytest.mark.asyncio
async def test_fetch_all_returns_rows_from_a_pooled_connection():
    cursor = MagicMock()
    cursor.execute = AsyncMock()
    cursor.fetchall = AsyncMock(return_value=[{"id": 1}])

    with patch("app.db.helpers.get_db_connection", AsyncMock(return_value=_connection(cursor))):
        rows = await fetch_all("SELECT id FROM users WHERE id = %s", (1,))

    assert rows == [{"id": 1}]
    cursor.execute.assert_awaited_once_with("SELECT id FROM users WHERE id = %s", (1,))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error,recoverable",
    [(psycopg.OperationalError("server closed"), True), (psycopg.ProgrammingError("bad column"), False)],
)
async def test_fetch_all_wraps_driver_errors(error, recoverable):
    cursor = MagicMock()
    cursor.execute = AsyncMock(side_effect=error)

    with patch("app.db.helpers.get_db_connection", AsyncMock(return_value=_connection(cursor))):
        with pytest.raises(DatabaseError) as exc_info:
            await fetch_all("SELECT 1")

    assert exc_info.value.operation == "fetch_all"
    assert exc_info.value.recoverable is recoverable
    assert exc_info.value.__cause__ is error
