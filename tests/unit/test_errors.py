"""Unit tests for error classification utilities."""

import pytest

from src.core.db_client import DatabaseError
from src.core.errors import (
    CircularRelationshipError,
    ErrorCode,
    ErrorSeverity,
    PersistenceError,
    TaskNotFoundError,
    TaskValidationError,
    classify_error_with_response,
)


@pytest.mark.unit
class TestErrorHierarchy:
    """Tests for the exception hierarchy."""

    def test_not_found_is_key_error(self):
        """Test TaskNotFoundError can be caught as KeyError."""
        with pytest.raises(KeyError):
            raise TaskNotFoundError("abc")

    def test_not_found_message(self):
        """Test TaskNotFoundError keeps the id and a readable message."""
        error = TaskNotFoundError("abc")

        assert error.task_id == "abc"
        assert str(error) == "Task not found: abc"

    def test_validation_is_value_error(self):
        """Test TaskValidationError can be caught as ValueError and carries its field."""
        error = TaskValidationError("Category is required", field="category")

        assert isinstance(error, ValueError)
        assert error.field == "category"

    def test_database_error_is_persistence_error(self):
        """Test store failures surface as PersistenceError."""
        assert issubclass(DatabaseError, PersistenceError)
        assert issubclass(PersistenceError, RuntimeError)


@pytest.mark.unit
class TestClassifyErrorWithResponse:
    """Tests for classify_error_with_response function."""

    def test_circular_relationship(self):
        """Test cycle errors keep their own message."""
        response = classify_error_with_response(CircularRelationshipError("Task cannot be its own parent"))

        assert response.code == ErrorCode.ERR_CIRCULAR_RELATIONSHIP
        assert response.message == "Task cannot be its own parent"
        assert response.severity == ErrorSeverity.LOW

    def test_validation(self):
        """Test validation errors keep their own message."""
        response = classify_error_with_response(TaskValidationError("Task name is required"))

        assert response.code == ErrorCode.ERR_VALIDATION
        assert response.message == "Task name is required"
        assert response.severity == ErrorSeverity.LOW

    def test_not_found(self):
        """Test missing tasks get a friendly message."""
        response = classify_error_with_response(TaskNotFoundError("abc"))

        assert response.code == ErrorCode.ERR_TASK_NOT_FOUND
        assert "no longer exists" in response.message
        assert response.severity == ErrorSeverity.LOW

    def test_persistence(self):
        """Test store failures are high severity."""
        response = classify_error_with_response(DatabaseError("disk I/O error"))

        assert response.code == ErrorCode.ERR_PERSISTENCE
        assert response.message == "Your change could not be saved."
        assert response.severity == ErrorSeverity.HIGH

    def test_unknown(self):
        """Test anything else falls back to a generic response."""
        response = classify_error_with_response(Exception("boom"))

        assert response.code == ErrorCode.ERR_UNKNOWN
        assert response.severity == ErrorSeverity.MEDIUM
        assert response.suggestion
