import pytest

from pathfinder.core import (
    BadRequestError,
    BrokerUnavailableError,
    InvalidInputError,
    NotFoundError,
    PathfinderError,
    PersistenceError,
    QueueNotFoundError,
    ServiceUnavailableError,
)


@pytest.mark.parametrize(
    "error, retryable, status_code",
    [
        (InvalidInputError(), False, 400),
        (ServiceUnavailableError(), True, 503),
        (BadRequestError(provider_status="ZERO_RESULTS"), False, 400),
        (PersistenceError(), True, 500),
        (NotFoundError(), False, 404),
        (BrokerUnavailableError(), True, 503),
    ],
)
def test_error_taxonomy(error, retryable, status_code):
    assert isinstance(error, PathfinderError)
    assert error.retryable is retryable
    assert error.status_code == status_code
    assert error.kind == type(error).__name__


def test_bad_request_carries_provider_status():
    error = BadRequestError("Google Directions API error: NOT_FOUND", provider_status="NOT_FOUND")
    assert error.provider_status == "NOT_FOUND"
    assert str(error) == "Google Directions API error: NOT_FOUND"


def test_not_found_is_a_persistence_error():
    with pytest.raises(PersistenceError):
        raise NotFoundError("Route r1 not found")


def test_queue_not_found_is_a_key_error():
    with pytest.raises(KeyError):
        raise QueueNotFoundError("missing")
