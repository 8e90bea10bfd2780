import logging
import threading
from datetime import datetime

from orderwindow.domain.models import EventLevel
from orderwindow.utils.event_log import ColorFormatter, EventLog


def _fixed_now(tz):
    return lambda: datetime(2026, 10, 18, 9, 15, 0, 123456, tzinfo=tz)


def test_record_keeps_emission_order_and_formats_lines(tz):
    log = EventLog(tz, now=_fixed_now(tz))
    log.info("alice", "Initializing trader")
    log.success("alice", "Order #1 executed")
    log.error(None, "boom")
    assert [e.level for e in log.events()] == [EventLevel.INFO, EventLevel.SUCCESS, EventLevel.ERROR]
    assert log.render().splitlines() == [
        "[09:15:00.123] [INFO] [alice] Initializing trader",
        "[09:15:00.123] [SUCCESS] [alice] Order #1 executed",
        "[09:15:00.123] [ERROR] boom",
    ]


def test_concurrent_appends_are_all_kept(tz):
    log = EventLog(tz, mirror=logging.getLogger("test.silent"))

    def worker(key):
        for i in range(200):
            log.info(key, f"event {i}")

    threads = [threading.Thread(target=worker, args=(f"acct{n}",)) for n in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(log) == 1000
    for n in range(5):
        msgs = [e.message for e in log.events() if e.account_key == f"acct{n}"]
        assert msgs == [f"event {i}" for i in range(200)]


def test_flush_writes_once_even_when_called_twice(tz, tmp_path):
    log = EventLog(tz, now=_fixed_now(tz))
    log.info("alice", "hello")
    log_dir = tmp_path / "logs"

    first = log.flush(log_dir)
    second = log.flush(log_dir)

    assert first == second
    files = list(log_dir.iterdir())
    assert files == [first]
    assert first.read_text(encoding="utf-8") == "[09:15:00.123] [INFO] [alice] hello"


def test_racing_flushes_produce_one_file(tz, tmp_path):
    log = EventLog(tz)
    log.info(None, "x")
    barrier = threading.Barrier(4)
    results = []

    def flusher():
        barrier.wait()
        results.append(log.flush(tmp_path))

    threads = [threading.Thread(target=flusher) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(set(results)) == 1
    assert len(list(tmp_path.iterdir())) == 1


def test_flush_marks_failed_runs_and_avoids_collisions(tz, tmp_path):
    a = EventLog(tz)
    b = EventLog(tz)
    path_a = a.flush(tmp_path, failed=True)
    path_b = b.flush(tmp_path)
    assert path_a.name.startswith("trade-")
    assert path_a.name.endswith("-error.log")
    assert path_a != path_b
    assert len(list(tmp_path.iterdir())) == 2


def test_color_formatter_colours_by_event_level():
    fmt = ColorFormatter("%(message)s")
    rec = logging.LogRecord("x", logging.INFO, __file__, 1, "ok", None, None)
    rec.event_level = EventLevel.SUCCESS
    assert fmt.format(rec) == "\033[32mok\033[0m"

    plain = ColorFormatter("%(message)s", use_colour=False)
    assert plain.format(rec) == "ok"
