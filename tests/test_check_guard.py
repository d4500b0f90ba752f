import pytest

from slotwatch.check_guard import CheckGuard


def test_acquire_is_exclusive_until_release() -> None:
    guard = CheckGuard()
    assert guard.try_acquire(7) is True
    assert guard.try_acquire(7) is False
    assert guard.try_acquire(8) is True
    assert guard.active_ids() == {7, 8}

    guard.release(7)
    assert guard.is_running(7) is False
    assert guard.try_acquire(7) is True


def test_release_of_unknown_id_is_a_noop() -> None:
    guard = CheckGuard()
    guard.release(99)
    assert guard.active_ids() == set()


def test_hold_releases_on_exception() -> None:
    guard = CheckGuard()
    with pytest.raises(RuntimeError):
        with guard.hold(3) as acquired:
            assert acquired is True
            assert guard.is_running(3)
            raise RuntimeError("boom")
    assert guard.is_running(3) is False


def test_contended_hold_does_not_release_other_holder() -> None:
    guard = CheckGuard()
    with guard.hold(5) as outer:
        assert outer is True
        with guard.hold(5) as inner:
            assert inner is False
        assert guard.is_running(5)
    assert not guard.is_running(5)
