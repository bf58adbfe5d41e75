"""Unit tests for host suspend detection and the keep-awake helper."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from clawdaunt.host.power import KeepAwake, SleepWatcher


class Clocks:
    def __init__(self) -> None:
        self.wall = 1_000.0
        self.mono = 50.0

    def tick(self, seconds: float, *, slept: float = 0.0) -> None:
        self.mono += seconds
        self.wall += seconds + slept


def _watcher(clocks: Clocks, hooks: MagicMock) -> SleepWatcher:
    return SleepWatcher(
        interval=5.0,
        on_suspend=hooks.suspend,
        on_resume=hooks.resume,
        wall_clock=lambda: clocks.wall,
        monotonic=lambda: clocks.mono,
    )


def test_no_sleep_detected_on_normal_ticks() -> None:
    clocks, hooks = Clocks(), MagicMock()
    watcher = _watcher(clocks, hooks)

    for _ in range(5):
        clocks.tick(5.0)
        assert watcher.check() is False
    hooks.suspend.assert_not_called()


def test_wall_clock_jump_is_suspend_then_resume() -> None:
    clocks, hooks = Clocks(), MagicMock()
    watcher = _watcher(clocks, hooks)

    clocks.tick(5.0, slept=3_600.0)
    assert watcher.check() is True
    assert [c[0] for c in hooks.method_calls] == ["suspend", "resume"]

    # Only reported once.
    clocks.tick(5.0)
    assert watcher.check() is False


def test_small_drift_is_ignored() -> None:
    clocks, hooks = Clocks(), MagicMock()
    watcher = _watcher(clocks, hooks)

    clocks.tick(5.0, slept=2.0)
    assert watcher.check() is False


async def test_start_stop_is_safe() -> None:
    watcher = _watcher(Clocks(), MagicMock())
    watcher.stop()
    watcher.start()
    watcher.start()
    watcher.stop()


async def test_keep_awake_noop_off_macos() -> None:
    keep_awake = KeepAwake()
    with patch("clawdaunt.host.power.sys.platform", "linux"), patch(
        "clawdaunt.host.power.ManagedProcess.spawn"
    ) as spawn:
        await keep_awake.start()
        await keep_awake.stop()
    spawn.assert_not_called()
