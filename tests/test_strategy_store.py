"""Tests for the proxy quarantine window."""

from core.strategy_store import ProxyQuarantine


class _FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_quarantined_key_is_excluded_until_window_passes():
    clock = _FakeClock()
    quarantine = ProxyQuarantine(window_seconds=1800, clock=clock)

    expires_at = quarantine.quarantine("proxy.example:8000")
    assert expires_at == 2800.0

    clock.now = 2799.999
    assert quarantine.is_quarantined("proxy.example:8000")

    clock.now = 2800.0
    assert not quarantine.is_quarantined("proxy.example:8000")


def test_unknown_key_is_not_quarantined():
    assert not ProxyQuarantine(clock=_FakeClock()).is_quarantined("other:1")


def test_prune_and_active_keys():
    clock = _FakeClock()
    quarantine = ProxyQuarantine(window_seconds=60, clock=clock)
    quarantine.quarantine("a:1")
    clock.now += 30
    quarantine.quarantine("b:2")

    assert quarantine.active_keys() == {"a:1", "b:2"}

    clock.now += 30
    assert quarantine.active_keys() == {"b:2"}
    assert len(quarantine) == 1


def test_release_and_clear():
    quarantine = ProxyQuarantine(clock=_FakeClock())
    quarantine.quarantine("a:1")
    quarantine.quarantine("b:2")

    quarantine.release("a:1")
    assert not quarantine.is_quarantined("a:1")

    quarantine.clear()
    assert len(quarantine) == 0
