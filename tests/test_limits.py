import time

import pytest

from plang import (
    PLExecutor, ExecutionOptions, PLTimeoutError, QuotaExceededError, PLRuntimeError,
)
from plang.plang_interpreter import OutputBuffer, ResourceMonitor


def executor(**options):
    return PLExecutor(ExecutionOptions(**options))


def test_infinite_loop_times_out():
    started = time.monotonic()
    with pytest.raises(PLTimeoutError) as exc:
        executor(timeout_ms=100).execute("while (true) {}")
    assert time.monotonic() - started < 5
    assert "timed out after 100ms" in exc.value.message
    assert exc.value.http_status == 408
    assert isinstance(exc.value, TimeoutError)


def test_timeout_inside_function_calls():
    src = "function spin() { while (true) { var x = 1 } }\nspin()"
    with pytest.raises(PLTimeoutError):
        executor(timeout_ms=100).execute(src)


def test_timeout_keeps_partial_output():
    with pytest.raises(PLTimeoutError) as exc:
        executor(timeout_ms=100).execute('print("before")\nwhile (true) {}')
    assert exc.value.output == "before\n"


def test_step_limit():
    with pytest.raises(PLTimeoutError) as exc:
        executor(max_steps=1000).execute("for (;;) {}")
    assert "exceeded 1000 steps" in exc.value.message


def test_step_limit_allows_short_programs():
    res = executor(max_steps=1000).execute("var t = 0\nfor (var i = 0; i < 10; i += 1) { t += i }\nt")
    assert res.value == 45.0


def test_output_is_truncated_to_the_limit():
    src = 'for (var i = 0; i < 1000; i += 1) { print("xxxxxxxxxx") }\n"done"'
    res = executor(max_output_length=100).execute(src)
    assert res.status == 'success'
    assert res.value == "done"
    assert len(res.output) == 100
    assert res.truncated


def test_output_within_the_limit_is_not_truncated():
    res = executor(max_output_length=6).execute('print("hello")')
    assert res.output == "hello\n"
    assert not res.truncated


def test_memory_quota():
    src = "var a = []\nfor (var i = 0; i < 100000; i += 1) { push(a, [1, 2, 3]) }"
    with pytest.raises(QuotaExceededError) as exc:
        executor(memory_limit_bytes=4096).execute(src)
    assert exc.value.http_status == 413
    assert "Memory limit of 4096 bytes exceeded" in exc.value.message


def test_string_growth_counts_against_memory():
    src = 'var s = "x"\nwhile (true) { s = s + s }'
    with pytest.raises(QuotaExceededError):
        executor(memory_limit_bytes=1024 * 1024).execute(src)


def test_unbounded_recursion():
    with pytest.raises(PLRuntimeError) as exc:
        executor().execute("function f() { return f() }\nf()")
    assert exc.value.message == "Maximum call stack size exceeded"


def test_call_depth_limit_is_exact():
    src = "function d(n) { return 0 if n == 0 else d(n - 1) }\n"
    assert executor(max_call_depth=10).execute(src + "d(9)").value == 0.0
    with pytest.raises(PLRuntimeError, match="Maximum call stack size exceeded"):
        executor(max_call_depth=10).execute(src + "d(10)")


def test_deep_but_allowed_recursion():
    src = "function sum(n) { return 0 if n == 0 else n + sum(n - 1) }\nsum(300)"
    assert executor(max_call_depth=400).execute(src).value == 45150.0


def test_limits_reset_between_executions():
    ex = executor(memory_limit_bytes=8192)
    for _ in range(20):
        ex.execute("var a = [1, 2, 3, 4, 5, 6, 7, 8]")


def test_output_buffer():
    buf = OutputBuffer(5)
    buf.write("abc")
    buf.write("defg")
    assert buf.getvalue() == "abcde"
    assert buf.truncated
    assert len(buf) == 5
    buf.clear()
    assert buf.getvalue() == "" and not buf.truncated


def test_resource_monitor_counts():
    monitor = ResourceMonitor(timeout_ms=1000, memory_limit_bytes=100, max_call_depth=2)
    monitor.allocate(60)
    with pytest.raises(QuotaExceededError):
        monitor.allocate(60)
    monitor.enter_call()
    monitor.enter_call()
    with pytest.raises(PLRuntimeError):
        monitor.enter_call()
    monitor.start()
    assert (monitor.allocated, monitor.call_depth, monitor.steps) == (0, 0, 0)


@pytest.mark.parametrize(
    "options",
    [
        {"timeout_ms": 0},
        {"memory_limit_bytes": -1},
        {"max_output_length": -5},
        {"max_call_depth": 0},
    ],
)
def test_invalid_limits_are_rejected(options):
    with pytest.raises(ValueError):
        ExecutionOptions(**options)
