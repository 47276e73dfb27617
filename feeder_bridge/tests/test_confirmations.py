import pytest

from feeder_bridge.lib.confirmations import ConfirmationLog


def test_empty_log():
    log = ConfirmationLog()
    assert log.recent() == ()


def test_record_is_newest_first(clock):
    log = ConfirmationLog(clock=clock)
    log.record("comida:dispensando")
    clock.advance(2)
    log.record("comida:completado")

    recent = log.recent()
    assert [r.message for r in recent] == ["comida:completado", "comida:dispensando"]
    assert recent[0].timestamp > recent[1].timestamp


def test_log_keeps_last_ten_of_fifteen():
    log = ConfirmationLog()
    for i in range(15):
        log.record(f"msg-{i}")

    recent = log.recent()
    assert len(recent) == 10
    assert [r.message for r in recent] == [f"msg-{i}" for i in range(14, 4, -1)]


def test_capacity_is_configurable():
    log = ConfirmationLog(capacity=3)
    for i in range(5):
        log.record(str(i))
    assert [r.message for r in log.recent()] == ["4", "3", "2"]


def test_recent_is_an_immutable_view():
    log = ConfirmationLog()
    log.record("agua:activada")
    view = log.recent()
    log.record("agua:desactivada")

    assert len(view) == 1
    with pytest.raises(Exception):
        view[0].message = "tampered"


def test_record_returns_entry(clock):
    entry = ConfirmationLog(clock=clock).record("agua:activada")
    assert entry.message == "agua:activada"
    assert entry.timestamp == clock.now
    assert entry.to_json()["timestamp"].startswith("2024-05-01T12:00:00")


def test_invalid_capacity():
    with pytest.raises(ValueError):
        ConfirmationLog(capacity=0)
