"""Domain errors map onto HTTP status codes."""

from propquest.gamification.exceptions import (
    Conflict,
    NotFound,
    ProgressionError,
    StorageUnavailable,
    ValidationError,
)
from propquest.middleware.error_handler import status_for


def test_status_codes():
    assert status_for(NotFound("x")) == 404
    assert status_for(ValidationError("x")) == 422
    assert status_for(Conflict("x")) == 409
    assert status_for(StorageUnavailable("x")) == 503


def test_base_error_is_server_error():
    assert status_for(ProgressionError("x")) == 500
