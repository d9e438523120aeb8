"""
Unit tests for duplicate-object detection during schema bootstrap.
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from jobstore.db.schema import is_duplicate_error


class FakeDriverError(Exception):
    """Driver error carrying a SQLSTATE, the way asyncpg and psycopg do."""

    def __init__(self, message: str, sqlstate: str):
        super().__init__(message)
        self.sqlstate = sqlstate


class TestIsDuplicateError:
    """Tests for is_duplicate_error."""

    @pytest.mark.parametrize("sqlstate", ["42P07", "42710", "42723", "23505"])
    def test_duplicate_sqlstates(self, sqlstate: str):
        error = ProgrammingError("CREATE", {}, FakeDriverError("dup", sqlstate))

        assert is_duplicate_error(error) is True

    def test_already_exists_message(self):
        """Test the SQLite wording for an existing index."""
        error = OperationalError(
            "CREATE INDEX", {}, Exception("index ix_jobs_status already exists")
        )

        assert is_duplicate_error(error) is True

    def test_duplicate_key_name_message(self):
        error = OperationalError(
            "CREATE INDEX", {}, Exception("Duplicate key name 'ix_jobs_status'")
        )

        assert is_duplicate_error(error) is True

    def test_other_errors_propagate(self):
        """Test that unrelated failures are not mistaken for duplicates."""
        permission = ProgrammingError(
            "CREATE TABLE", {}, FakeDriverError("permission denied", "42501")
        )
        locked = OperationalError("CREATE INDEX", {}, Exception("database is locked"))
        constraint = IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed"))

        assert is_duplicate_error(permission) is False
        assert is_duplicate_error(locked) is False
        assert is_duplicate_error(constraint) is False
