from smb_erp.core.rate_limit import LoginRateLimiter, login_key


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _limiter(clock):
    return LoginRateLimiter(max_attempts=3, window_seconds=60, lock_seconds=120, clock=clock)


def test_locks_after_max_failures_and_unlocks_later():
    clock = _Clock()
    limiter = _limiter(clock)
    key = login_key(" Admin ", "10.0.0.1")
    assert key == "admin@10.0.0.1"

    for _ in range(3):
        assert limiter.retry_after(key) == 0
        limiter.register_failure(key)

    assert limiter.retry_after(key) == 121
    clock.now += 121
    assert limiter.retry_after(key) == 0


def test_failures_outside_window_do_not_count():
    clock = _Clock()
    limiter = _limiter(clock)
    key = login_key("clerk", "10.0.0.2")

    limiter.register_failure(key)
    limiter.register_failure(key)
    clock.now += 61
    limiter.register_failure(key)

    assert limiter.retry_after(key) == 0


def test_success_resets_failures():
    clock = _Clock()
    limiter = _limiter(clock)
    key = login_key("clerk", "10.0.0.3")

    limiter.register_failure(key)
    limiter.register_failure(key)
    limiter.register_success(key)
    limiter.register_failure(key)

    assert limiter.retry_after(key) == 0
