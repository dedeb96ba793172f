import pytest

from subscriptions.validity import ManualClock, remaining


def test_remaining_never_negative():
    assert remaining(1_000, 400) == 600
    assert remaining(1_000, 1_000) == 0
    assert remaining(1_000, 5_000) == 0


def test_manual_clock_only_moves_forward():
    clock = ManualClock(current=100)
    assert clock.advance(50) == 150
    assert clock.now() == 150
    with pytest.raises(ValueError):
        clock.advance(-1)
