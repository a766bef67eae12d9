import pytest

from plang import PLExecutor, ExecutionOptions, SecurityError


def run_pl(src: str, **options):
    return PLExecutor(ExecutionOptions(**options)).run(src)


def assert_denied(res, name: str):
    assert res.status == 'error', f"expected a security error, got success: {res.value!r}"
    assert isinstance(res.error, SecurityError), res.error_message
    assert name in res.error_message


@pytest.mark.parametrize(
    "src,name",
    [
        ('eval("1 + 1")', "eval"),
        ('require("fs")', "require"),
        ('import("os")', "import"),
        ('fetch("http://example.com")', "fetch"),
        ("process.exit()", "process"),
        ("globalThis", "globalThis"),
        ("window.location", "window"),
        ("document", "document"),
        ('Function("return 1")', "Function"),
        ("XMLHttpRequest", "XMLHttpRequest"),
    ],
)
def test_denied_identifiers(src, name):
    assert_denied(run_pl(src), name)


def test_denied_names_cannot_be_declared():
    assert_denied(run_pl("var eval = 1"), "eval")
    assert_denied(run_pl("function require() {}"), "require")
    assert_denied(run_pl("function f(fetch) { return 1 }"), "fetch")
    assert_denied(run_pl("var f = process -> 1"), "process")


def test_denied_names_cannot_be_assigned():
    assert_denied(run_pl("eval = 1"), "eval")


def test_prototype_pollution_is_blocked():
    assert_denied(run_pl("Object.prototype.polluted = true"), "prototype")
    assert_denied(run_pl("var o = {}\no.__proto__.x = 1"), "__proto__")
    assert_denied(run_pl("var o = {}\no.constructor"), "constructor")


def test_computed_access_to_internals_is_blocked():
    assert_denied(run_pl('var o = {}\no["__pro" + "to__"]'), "__proto__")
    assert_denied(run_pl('var o = {}\no["constructor"] = 1'), "constructor")
    assert_denied(run_pl('[]["__class__"]'), "__class__")


def test_dunder_properties_are_blocked():
    assert_denied(run_pl('"abc".__class__'), "__class__")
    assert_denied(run_pl("print.__globals__"), "__globals__")


def test_object_literals_cannot_define_internals():
    assert_denied(run_pl("var o = {__proto__: 1}"), "__proto__")
    assert_denied(run_pl('var o = {"constructor": 1}'), "constructor")


def test_security_error_carries_position():
    res = run_pl("var a = 1\nvar b = eval")
    assert (res.error.line, res.error.column) == (2, 9)
    assert res.error.http_status == 400


def test_denied_preset_globals_are_rejected():
    with pytest.raises(SecurityError):
        PLExecutor(ExecutionOptions(preset_globals={"eval": 1}))


def test_denied_host_variables_are_rejected():
    executor = PLExecutor()
    with pytest.raises(SecurityError):
        executor.set_variable("require", lambda name: None)


def test_denied_programs_do_not_run_at_all():
    res = run_pl('print("before")\nrequire("fs")')
    assert_denied(res, "require")
    assert res.output == ""
    assert (res.error.line, res.error.column) == (2, 1)


@pytest.mark.parametrize(
    "src,name",
    [
        ('if (false) { eval("1") }', "eval"),
        ("function never() { return require }", "require"),
        ("var f = x -> x.constructor", "constructor"),
        ('while (false) { o["__proto__"] = 1 }', "__proto__"),
        ("var o = false and {prototype: 1}", "prototype"),
    ],
)
def test_denied_names_in_code_that_never_runs(src, name):
    assert_denied(run_pl(src), name)


def test_property_names_may_match_denied_identifiers():
    res = run_pl("var o = {open: 1, exec: 2}\no.open + o.exec")
    assert res.status == 'success', res.error_message
    assert res.value == 3.0


def test_similar_names_are_allowed():
    res = run_pl("var evaluate = 1\nvar o = {proto: 2, constructors: 3}\nevaluate + o.proto + o.constructors")
    assert res.status == 'success', res.error_message
    assert res.value == 6.0
