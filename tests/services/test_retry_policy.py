import pytest

from chain_relay.models import EventStatus
from chain_relay.services.retry_policy import RetryPolicy


def test_default_budget_is_ten_attempts() -> None:
    policy = RetryPolicy()

    assert policy.max_retries == 10
    assert not policy.is_exhausted(9)
    assert policy.is_exhausted(10)


@pytest.mark.parametrize(
    ("retry_count", "expected"),
    [(0, EventStatus.PENDING), (2, EventStatus.PENDING), (3, EventStatus.FAILED), (4, EventStatus.FAILED)],
)
def test_next_state(retry_count: int, expected: str) -> None:
    assert RetryPolicy(3).next_state(retry_count) == expected


def test_budget_must_be_positive() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(0)
