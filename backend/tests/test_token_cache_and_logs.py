import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from logging.handlers import TimedRotatingFileHandler

from konsider.utils.log_files import JsonLineFormatter, LOG_FILE_NAME, cleanup_old_logs, configure_file_logging
from konsider.utils.rate_limit import InMemoryRateLimiter
from konsider.utils.token_cache import TokenCache, TokenCacheWorker


def test_token_cache_operations():
    cache = TokenCache()
    user_a, user_b = uuid.uuid4(), uuid.uuid4()
    jti_1, jti_2, jti_3 = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    cache.insert(jti_1, user_a)
    cache.insert(jti_2, user_a)
    cache.insert(jti_3, user_b)
    assert cache.is_valid(jti_1, user_a)
    assert not cache.is_valid(jti_1, user_b)

    cache.remove(jti_1, user_a)
    assert not cache.is_valid(jti_1, user_a)
    assert cache.remove_user(user_a) == 1
    assert len(cache) == 1

    cache.insert(jti_1, user_b)
    assert cache.retain([(jti_1, user_b)]) == 1
    assert cache.is_valid(jti_1, user_b)
    assert not cache.is_valid(jti_3, user_b)
    cache.clear()
    assert len(cache) == 0


def test_worker_run_once_only_drops_dead_tokens():
    cache = TokenCache()
    stale = (uuid.uuid4(), uuid.uuid4())
    kept = (uuid.uuid4(), uuid.uuid4())
    cache.insert(*stale)
    cache.insert(*kept)
    other_process = (uuid.uuid4(), uuid.uuid4())
    worker = TokenCacheWorker(cache, lambda: [kept, other_process], interval_seconds=60)
    assert worker.run_once() == 1
    assert not cache.is_valid(*stale)
    assert cache.is_valid(*kept)
    # live tokens are never added by the refresh
    assert not cache.is_valid(*other_process)


def test_removal_during_refresh_is_not_undone():
    cache = TokenCache()
    key = (uuid.uuid4(), uuid.uuid4())
    cache.insert(*key)

    def refresh():
        snapshot = [key]
        cache.remove(*key)
        return snapshot

    TokenCacheWorker(cache, refresh, interval_seconds=60).run_once()
    assert not cache.is_valid(*key)


def test_insert_since_is_skipped_after_a_removal():
    cache = TokenCache()
    key = (uuid.uuid4(), uuid.uuid4())
    since = cache.removals
    cache.remove_user(key[1])
    assert cache.insert(*key, since=since) is False
    assert not cache.is_valid(*key)
    assert cache.insert(*key, since=cache.removals) is True
    assert cache.is_valid(*key)


def test_worker_keeps_cache_when_refresh_fails():
    cache = TokenCache()
    key = (uuid.uuid4(), uuid.uuid4())
    cache.insert(*key)

    def broken():
        raise RuntimeError("database unavailable")

    worker = TokenCacheWorker(cache, broken, interval_seconds=0.01)
    worker.start()
    worker.stop()
    assert cache.is_valid(*key)


def test_cleanup_old_logs(tmp_path):
    now = datetime(2026, 3, 31, 12, tzinfo=timezone.utc)
    old = now - timedelta(days=31)
    recent = now - timedelta(days=2)
    old_file = tmp_path / f"{LOG_FILE_NAME}.{old.strftime('%Y-%m-%d_%H')}"
    recent_file = tmp_path / f"{LOG_FILE_NAME}.{recent.strftime('%Y-%m-%d_%H')}"
    broken = tmp_path / f"{LOG_FILE_NAME}.yesterday"
    active = tmp_path / LOG_FILE_NAME
    other = tmp_path / "notes.txt"
    for path in (old_file, recent_file, broken, active, other):
        path.write_text("{}\n", encoding="utf-8")

    deleted = cleanup_old_logs(tmp_path, retention_days=30, now=now)
    assert deleted == [old_file]
    assert not old_file.exists()
    for path in (recent_file, broken, active, other):
        assert path.exists()


def test_cleanup_missing_dir_is_noop(tmp_path):
    assert cleanup_old_logs(tmp_path / "missing", retention_days=1) == []


def test_json_line_formatter():
    record = logging.LogRecord("konsider.api", logging.WARNING, __file__, 1, "request_error %s", ("x",), None)
    line = json.loads(JsonLineFormatter().format(record))
    assert line["name"] == "konsider"
    assert line["level"] == "WARNING"
    assert line["msg"] == "request_error x"
    assert {"time", "hostname", "pid"} <= set(line)


def test_rate_limiter_window():
    now = [1000.0]
    limiter = InMemoryRateLimiter(clock=lambda: now[0])
    assert limiter.allow("ip:/login", 2, 60) == (True, 0)
    assert limiter.allow("ip:/login", 2, 60) == (True, 0)
    allowed, retry_after = limiter.allow("ip:/login", 2, 60)
    assert allowed is False
    assert retry_after == 60
    # other keys are independent
    assert limiter.allow("other:/login", 2, 60)[0] is True

    now[0] += 61
    assert limiter.allow("ip:/login", 2, 60)[0] is True

    limiter.reset("ip:/login")
    assert limiter.allow("ip:/login", 0, 60) == (True, 0)


def test_configure_file_logging_reuses_its_handler(tmp_path):
    logger = logging.getLogger("konsider")
    level = logger.level
    first = configure_file_logging(str(tmp_path), "INFO")
    try:
        assert configure_file_logging(str(tmp_path / "other"), "INFO") is first
        assert [h for h in logger.handlers if isinstance(h, TimedRotatingFileHandler)] == [first]
        assert not (tmp_path / "other").exists()
        logging.getLogger("konsider.api").info("hello")
        first.flush()
        lines = (tmp_path / LOG_FILE_NAME).read_text(encoding="utf-8").splitlines()
        assert "hello" in [json.loads(line)["msg"] for line in lines]
    finally:
        logger.removeHandler(first)
        first.close()
        logger.setLevel(level)


def test_rate_limiter_forgets_idle_keys():
    now = [0.0]
    limiter = InMemoryRateLimiter(clock=lambda: now[0])
    for i in range(50):
        limiter.allow(f"10.0.0.{i}:/login", 5, 60)
    assert len(limiter) == 50

    now[0] += 30
    limiter.allow("busy:/login", 5, 60)
    assert len(limiter) == 51

    now[0] += 45
    limiter.allow("late:/login", 5, 60)
    # only keys with a hit inside the last window survive
    assert len(limiter) == 2
