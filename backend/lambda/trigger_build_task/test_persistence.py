"""TaskStateStore tests with a mocked psycopg connection pool."""

from __future__ import annotations

import datetime as dt
import pathlib
import sys
import unittest
from unittest.mock import MagicMock, patch

sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent))

import psycopg

import persistence
from errors import PersistenceError
from models import TaskStatus
from persistence import TaskStateStore


def _store_with_conn():
    pool = MagicMock()
    conn = MagicMock()
    pool.connection.return_value.__enter__.return_value = conn
    return TaskStateStore(pool), pool, conn


class UpdateStatusTests(unittest.TestCase):
    def test_update_writes_status_and_timestamp(self):
        store, _pool, conn = _store_with_conn()
        conn.execute.return_value.rowcount = 1

        touched = store.update_status("t1", TaskStatus.STARTING)

        self.assertEqual(touched, 1)
        sql, params = conn.execute.call_args[0]
        self.assertIn('UPDATE "Task"', sql)
        self.assertIn('"lastUpdated"', sql)
        self.assertEqual(params[0], "STARTING")
        self.assertIsInstance(params[1], dt.datetime)
        self.assertIsNotNone(params[1].tzinfo)
        self.assertEqual(params[2], "t1")

    def test_starting_claim_requires_in_queue(self):
        store, _pool, conn = _store_with_conn()
        conn.execute.return_value.rowcount = 1

        store.update_status("t1", TaskStatus.STARTING)

        sql, params = conn.execute.call_args[0]
        self.assertIn('AND "status" IN (%s)', sql)
        self.assertEqual(sql.count("%s"), len(params))
        self.assertEqual(params[3:], ("IN_QUEUE",))

    def test_in_queue_reset_allowed_from_in_queue_or_starting(self):
        store, _pool, conn = _store_with_conn()
        conn.execute.return_value.rowcount = 1

        store.update_status("t1", TaskStatus.IN_QUEUE)

        sql, params = conn.execute.call_args[0]
        self.assertIn('AND "status" IN (%s, %s)', sql)
        self.assertEqual(params[3:], ("IN_QUEUE", "STARTING"))

    def test_failed_only_overwrites_starting(self):
        store, _pool, conn = _store_with_conn()
        conn.execute.return_value.rowcount = 1

        store.update_status("t1", TaskStatus.FAILED)

        _sql, params = conn.execute.call_args[0]
        self.assertEqual(params[0], "FAILED")
        self.assertEqual(params[3:], ("STARTING",))

    def test_redelivered_building_task_is_left_alone(self):
        # The row is BUILDING, so the guarded UPDATE matches nothing.
        store, _pool, conn = _store_with_conn()
        conn.execute.return_value.rowcount = 0

        with self.assertLogs("trigger_build_task", level="WARNING") as logs:
            touched = store.update_status("t1", TaskStatus.STARTING)

        self.assertEqual(touched, 0)
        self.assertIn("IN_QUEUE", logs.output[0])

    def test_repeated_update_is_harmless(self):
        store, _pool, conn = _store_with_conn()
        conn.execute.return_value.rowcount = 1
        store.update_status("t1", TaskStatus.FAILED)
        store.update_status("t1", TaskStatus.FAILED)
        self.assertEqual(conn.execute.call_count, 2)

    def test_missing_task_row_returns_zero(self):
        store, _pool, conn = _store_with_conn()
        conn.execute.return_value.rowcount = 0
        self.assertEqual(store.update_status("ghost", TaskStatus.IN_QUEUE), 0)

    def test_database_error_raises_persistence_error(self):
        store, _pool, conn = _store_with_conn()
        conn.execute.side_effect = psycopg.OperationalError("connection reset")
        with self.assertLogs("trigger_build_task", level="ERROR") as logs:
            with self.assertRaises(PersistenceError):
                store.update_status("t1", TaskStatus.STARTING)
        self.assertIsNotNone(logs.records[0].exc_info)


class RemoveOngoingJobTests(unittest.TestCase):
    def test_locks_then_deletes(self):
        store, _pool, conn = _store_with_conn()
        conn.execute.return_value.fetchone.return_value = {"id": "job-9"}

        self.assertTrue(store.remove_ongoing_job("t1"))

        conn.transaction.assert_called_once()
        lock_sql, lock_params = conn.execute.call_args_list[0][0]
        delete_sql, delete_params = conn.execute.call_args_list[1][0]
        self.assertIn("FOR UPDATE", lock_sql)
        self.assertEqual(lock_params, ("t1",))
        self.assertIn('DELETE FROM "OngoingJob"', delete_sql)
        self.assertEqual(delete_params, ("job-9",))

    def test_absent_row_is_not_an_error(self):
        store, _pool, conn = _store_with_conn()
        conn.execute.return_value.fetchone.return_value = None

        self.assertFalse(store.remove_ongoing_job("t1"))
        self.assertFalse(store.remove_ongoing_job("t1"))
        for call in conn.execute.call_args_list:
            self.assertNotIn("DELETE", call[0][0])

    def test_database_error_raises_persistence_error(self):
        store, _pool, conn = _store_with_conn()
        conn.execute.side_effect = psycopg.errors.LockNotAvailable("locked")
        with self.assertRaises(PersistenceError):
            store.remove_ongoing_job("t1")


class StoreLifecycleTests(unittest.TestCase):
    def tearDown(self):
        persistence._store = None

    def test_missing_dsn_raises(self):
        with self.assertRaises(PersistenceError):
            TaskStateStore.from_dsn("")

    @patch.object(persistence, "POSTGRES_URL", "postgresql://codehost@localhost/codehost")
    @patch.object(persistence, "ConnectionPool")
    def test_store_is_created_once_and_closed(self, mock_pool_cls):
        first = persistence._get_store()
        second = persistence._get_store()
        self.assertIs(first, second)
        mock_pool_cls.assert_called_once()
        self.assertEqual(mock_pool_cls.call_args[0][0], "postgresql://codehost@localhost/codehost")

        persistence._close_store()
        mock_pool_cls.return_value.close.assert_called_once()
        self.assertIsNone(persistence._store)


if __name__ == "__main__":
    unittest.main()
