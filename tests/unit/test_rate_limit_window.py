from chat_agent.agent.rate_limit import RateLimitWindow


def test_window_inactive_until_extended(clock) -> None:
    window = RateLimitWindow(clock=clock)

    assert not window.is_active()
    assert window.remaining() == 0.0


def test_extend_sets_deadline_and_expires(clock) -> None:
    window = RateLimitWindow(clock=clock)

    deadline = window.extend(5.0)

    assert deadline == clock.now + 5.0
    assert window.is_active()
    clock.advance(3.0)
    assert window.remaining() == 2.0
    clock.advance(2.0)
    assert not window.is_active()


def test_extend_never_moves_deadline_backwards(clock) -> None:
    window = RateLimitWindow(clock=clock)
    window.extend(10.0)

    assert window.extend(2.0) == clock.now + 10.0
    clock.advance(9.0)
    assert window.extend(4.0) == clock.now + 4.0


def test_negative_delay_is_ignored(clock) -> None:
    window = RateLimitWindow(clock=clock)

    window.extend(-3.0)

    assert not window.is_active()
