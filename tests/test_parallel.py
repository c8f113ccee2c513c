import threading
import time

import pytest

from falcoprobes.parallel import run_parallel_and_collect_errors


def _fn(message):
    def fn():
        if message is not None:
            raise RuntimeError(message)

    return fn


@pytest.mark.parametrize(
    "fn_results, limit, expected",
    [
        ([None, None, None, None], 3, []),
        ([None, None, "foo", None], 3, ["foo"]),
        ([None, "bar", "foo", None], 3, ["bar", "foo"]),
        (["bar", "bar", "foo", "bar"], 3, ["bar", "bar", "foo", "bar"]),
    ],
    ids=["no errors", "1 error", "2 errors", "all errors"],
)
def test_run_parallel_and_collect_errors(fn_results, limit, expected):
    errors = run_parallel_and_collect_errors([_fn(r) for r in fn_results], limit)
    assert len(errors) == len(expected)
    assert sorted(str(e) for e in errors) == sorted(expected)


def test_run_parallel_and_collect_errors_loops():
    amount = 10
    out = []

    def make(number):
        def fn():
            out.append(number)

        return fn

    errors = run_parallel_and_collect_errors([make(n) for n in range(amount)], 4)
    assert errors == []
    assert sorted(out) == list(range(amount))


def test_limit_bounds_concurrency():
    lock = threading.Lock()
    running = 0
    peak = 0

    def fn():
        nonlocal running, peak
        with lock:
            running += 1
            peak = max(peak, running)
        time.sleep(0.02)
        with lock:
            running -= 1

    errors = run_parallel_and_collect_errors([fn] * 8, 2)
    assert errors == []
    assert 1 <= peak <= 2


def test_empty_input_returns_no_errors():
    assert run_parallel_and_collect_errors([], 3) == []


def test_non_positive_limit_is_rejected():
    with pytest.raises(ValueError):
        run_parallel_and_collect_errors([_fn(None)], 0)