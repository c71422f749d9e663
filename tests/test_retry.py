import pytest
import requests

from concert_pipeline.retry import RateLimitError, is_retryable, suggested_delay, with_retry


class Flaky:
    def __init__(self, *errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def _http_error(status, headers=None):
    response = requests.Response()
    response.status_code = status
    response.headers.update(headers or {})
    return requests.HTTPError(f"{status} error", response=response)


def test_backoff_doubles_until_success(sleeps):
    operation = Flaky(RateLimitError("quota"), RateLimitError("quota"))
    assert with_retry(operation, tries=4, base_delay=1.0, sleep=sleeps) == "ok"
    assert operation.calls == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.parametrize(
    "error",
    [
        _http_error(429),
        _http_error(503),
        requests.ConnectionError("reset"),
        requests.Timeout("read timed out"),
        RuntimeError("The model is overloaded. Please try again later."),
        RuntimeError("Request timed out"),
    ],
)
def test_transient_errors_are_retried(error):
    assert is_retryable(error)


@pytest.mark.parametrize("error", [_http_error(400), _http_error(404), ValueError("invalid input")])
def test_client_errors_are_not_retried(error, sleeps):
    assert not is_retryable(error)
    operation = Flaky(error)
    with pytest.raises(type(error)):
        with_retry(operation, tries=4, base_delay=1.0, sleep=sleeps)
    assert operation.calls == 1
    assert sleeps == []


def test_gives_up_after_tries(sleeps):
    operation = Flaky(*[requests.ConnectionError("connection refused")] * 5)
    with pytest.raises(requests.ConnectionError):
        with_retry(operation, tries=3, base_delay=0.5, sleep=sleeps)
    assert operation.calls == 3
    assert sleeps == [0.5, 1.0]


def test_server_hint_raises_the_delay(sleeps):
    operation = Flaky(RuntimeError("429 Too Many Requests, retry after 7 seconds"))
    with_retry(operation, tries=2, base_delay=1.0, sleep=sleeps)
    assert sleeps == [7.0]


def test_hint_never_shortens_backoff(sleeps):
    operation = Flaky(RateLimitError("quota"), RateLimitError("quota"), RateLimitError('"retryDelay": "1s"'))
    with_retry(operation, tries=4, base_delay=3.0, sleep=sleeps)
    assert sleeps == [3.0, 6.0, 12.0]


def test_suggested_delay_sources():
    assert suggested_delay(RuntimeError('{"retryDelay": "30s"}')) == 30.0
    assert suggested_delay(_http_error(429, {"Retry-After": "12"})) == 12.0
    assert suggested_delay(RuntimeError("quota exceeded")) is None
