from starlette.requests import Request

from backoffice.core.rate_limit import RateLimiter, Rule


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_request(path, method="POST", client="10.0.0.1"):
    return Request({
        "type": "http",
        "method": method,
        "path": path,
        "root_path": "",
        "query_string": b"",
        "headers": [],
        "client": (client, 5000),
    })


def test_login_is_limited_per_client_and_window():
    clock = FakeClock()
    limiter = RateLimiter(rules={"/api/v1/auth/login": Rule(2, 60)}, clock=clock)

    assert limiter.check(make_request("/api/v1/auth/login"))[0]
    assert limiter.check(make_request("/api/v1/auth/login"))[0]
    allowed, info = limiter.check(make_request("/api/v1/auth/login"))
    assert not allowed
    assert info["retry_after"] == 60

    assert limiter.check(make_request("/api/v1/auth/login", client="10.0.0.2"))[0]

    clock.now += 61
    assert limiter.check(make_request("/api/v1/auth/login"))[0]


def test_lifecycle_writes_share_one_bucket_and_reads_are_free():
    limiter = RateLimiter(rules={"/api/v1/sales": Rule(1, 60)}, clock=FakeClock())

    assert limiter.check(make_request("/api/v1/sales/1/complete"))[0]
    assert not limiter.check(make_request("/api/v1/sales/2/cancel"))[0]
    assert limiter.check(make_request("/api/v1/sales/2", method="GET")) == (True, None)


def test_reset_clears_counters():
    limiter = RateLimiter(rules={"/api/v1/refunds": Rule(1, 60)}, clock=FakeClock())
    limiter.check(make_request("/api/v1/refunds"))

    limiter.reset()

    assert limiter.check(make_request("/api/v1/refunds"))[0]
