import math

import pytest

from plang import PLExecutor, ExecutionOptions


def run_pl(src: str, **options):
    executor = PLExecutor(ExecutionOptions(**options))
    return executor.run(src)


def assert_ok(res, output=None, value=None):
    assert res.status == 'success', res.error_message
    if output is not None:
        assert res.output == output
    if value is not None:
        assert res.value == value


def assert_error(res, contains: str | None = None, kind: str = "RuntimeError"):
    assert res.status == 'error', f"expected error, got success: {res.value!r}"
    assert res.error.kind == kind
    if contains is not None:
        assert contains in (res.error_message or ""), f"error did not contain {contains!r}: {res.error_message!r}"


def test_hello_world():
    assert_ok(run_pl('print("Hello, World!")'), output="Hello, World!\n")


def test_arithmetic_precedence():
    assert_ok(run_pl("print(1 + 2 * 3)"), output="7\n")


def test_last_expression_is_the_value():
    assert_ok(run_pl("1 + 1\nvar y = 3"), value=2.0)
    assert_ok(run_pl("var y = 3"))
    assert run_pl("var y = 3").value is None


def test_function_scope_shadows_global():
    src = """
var x = 10
function f() {
  var x = 20
  print(x)
}
f()
print(x)
"""
    assert_ok(run_pl(src), output="20\n10\n")


def test_closures_keep_their_environment():
    src = """
function makeCounter() {
  var count = 0
  return function () {
    count = count + 1
    return count
  }
}
var c = makeCounter()
print(c())
print(c())
var d = makeCounter()
print(d())
"""
    assert_ok(run_pl(src), output="1\n2\n1\n")


def test_arrow_functions():
    assert_ok(run_pl("var double = x -> x * 2\nprint(double(4))"), output="8\n")
    assert_ok(run_pl("var f = x -> { return x + 1 }\nf(1)"), value=2.0)


def test_named_function_expression_recursion():
    src = "var fact = function f(n) { return 1 if n <= 1 else n * f(n - 1) }\nprint(fact(5))"
    assert_ok(run_pl(src), output="120\n")


def test_recursive_declaration():
    src = """
function fib(n) {
  if (n < 2) return n
  return fib(n - 1) + fib(n - 2)
}
fib(15)
"""
    assert_ok(run_pl(src), value=610.0)


def test_missing_arguments_are_null():
    assert_ok(run_pl("function f(a, b) { return b }\nf(1) == null"), value=True)


def test_string_concatenation():
    assert_ok(run_pl('print("a" + 1, 1 + "a", "x" + null, "t" + true)'), output="a1 1a xnull ttrue\n")


def test_number_formatting():
    assert_ok(run_pl("print(0.1 + 0.2, 10 / 4, -0, 2 ^ 10, 10 ^ 400)"),
              output="0.30000000000000004 2.5 0 1024 Infinity\n")


def test_modulo_keeps_dividend_sign():
    assert_ok(run_pl("print(-7 % 3, 7 % -3)"), output="-1 1\n")


def test_type_mismatch_is_an_error():
    assert_error(run_pl("1 + true"), "Cannot apply operator '+' to number and boolean")
    assert_error(run_pl('1 < "a"'), "Cannot apply operator '<'")
    assert_error(run_pl('-"a"'), "Cannot apply unary '-' to string")


def test_division_by_zero():
    res = run_pl("var a = 1\nprint(a / 0)")
    assert_error(res, "Division by zero")
    assert res.error.line == 2


def test_equality_is_strict():
    src = """
var a = [1]
print(1 == true, "a" == "a", [1] == [1], a == a, null == null, 1 != "1")
"""
    assert_ok(run_pl(src), output="false true false true true true\n")


def test_truthiness_and_short_circuit():
    src = """
print(0 or "default", 1 and 2, not "", not [], null or false)
var called = false
function touch() { called = true; return true }
false and touch()
print(called)
"""
    assert_ok(run_pl(src), output="default 2 true false false\nfalse\n")


def test_string_comparison():
    assert_ok(run_pl('"apple" < "banana"'), value=True)


def test_while_with_break_and_continue():
    src = """
var i = 0
var total = 0
while (true) {
  i += 1
  if (i > 10) break
  if (i % 2 == 0) continue
  total += i
}
print(total)
"""
    assert_ok(run_pl(src), output="25\n")


def test_for_loop_scope():
    src = "for (var i = 0; i < 3; i += 1) { print(i) }\nprint(i)"
    res = run_pl(src)
    assert_error(res, "Undefined variable 'i'")
    assert res.output == "0\n1\n2\n"


def test_for_loop_with_outer_counter():
    src = "var i\nfor (i = 0; i < 3; i += 1) {}\nprint(i)"
    assert_ok(run_pl(src), output="3\n")


def test_return_from_inside_loop():
    src = """
function find(items, wanted) {
  for (var i = 0; i < len(items); i += 1) {
    if (items[i] == wanted) return i
  }
  return -1
}
print(find([5, 6, 7], 7), find([5], 1))
"""
    assert_ok(run_pl(src), output="2 -1\n")


def test_switch_falls_through_until_break():
    src = """
function describe(x) {
  switch (x) {
    case 1: print("one")
    case 2: print("two")
    case 3: print("three"); break
    default: print("other")
  }
}
describe(2)
describe(9)
describe(1)
"""
    assert_ok(run_pl(src), output="two\nthree\nother\none\ntwo\nthree\n")


def test_switch_without_match_or_default():
    assert_ok(run_pl('switch ("z") { case "a": print(1) }\nprint("done")'), output="done\n")


def test_const_cannot_be_reassigned():
    res = run_pl("const x = 1\nx = 2")
    assert_error(res, "Assignment to constant variable 'x'")
    assert (res.error.line, res.error.column) == (2, 1)


def test_const_cannot_be_redeclared():
    assert_error(run_pl("const x = 1\nvar x = 2"), "Identifier 'x' has already been declared")
    assert_error(run_pl("const x = 1\nconst x = 2"), "already been declared")


def test_var_can_be_redeclared():
    assert_ok(run_pl("var x = 1\nvar x = 2\nx"), value=2.0)


def test_undefined_variable_position():
    res = run_pl("var a = 1\nprint(a + missing)")
    assert_error(res, "Undefined variable 'missing'")
    assert (res.error.line, res.error.column) == (2, 11)


def test_assignment_to_undeclared_name():
    assert_error(run_pl("y = 1"), "Undefined variable 'y'")


def test_illegal_control_flow():
    assert_error(run_pl("return 1"), "Illegal return outside of function")
    assert_error(run_pl("break"), "Illegal break outside of loop")
    assert_error(run_pl("function f() { continue }\nf()"), "Illegal continue outside of loop")


def test_calling_a_non_function():
    assert_error(run_pl("var x = 1\nx()"), "x is not a function")
    assert_error(run_pl("var o = {}\no.missing()"), "o.missing is not a function")


def test_objects_and_members():
    src = """
var o = {n: 1, "k": "v"}
o.n += 2
o["extra"] = [1, 2]
o.extra[2] = 3
print(o.n, o.k, o.extra, o.nothing, len(o))
print(o)
"""
    assert_ok(run_pl(src), output="3 v [1, 2, 3] null 3\n{n: 3, k: v, extra: [1, 2, 3]}\n")


def test_number_keys_are_normalised():
    assert_ok(run_pl("var o = {1: \"a\"}\no[1]"), value="a")


def test_array_index_out_of_range():
    assert_ok(run_pl("[1, 2][5] == null"), value=True)
    assert_error(run_pl("var a = []\na[3] = 1"), "Invalid array index 3")


def test_member_of_null():
    assert_error(run_pl("var x = null\nx.foo"), "Cannot read property 'foo' of null")


def test_member_of_number():
    assert_error(run_pl("var n = 1\nn.foo"), "Cannot read property 'foo' of number")


def test_length_property():
    assert_ok(run_pl('print("abc".length, [1, 2].length)'), output="3 2\n")


def test_print_variants():
    src = 'print("a", 1, true, null, [1, "a", [2]], {a: {b: 1}})\nprintln("x")\nprint()'
    assert_ok(run_pl(src), output="a 1 true null [1, a, [2]] {a: {b: 1}}\nx\n\n")


def test_print_functions():
    assert_ok(run_pl("function f() {}\nprint(f, x -> x, print)"),
              output="<function f> <function anonymous> <builtin print>\n")


def test_circular_values_print():
    assert_ok(run_pl("var a = []\npush(a, a)\nprint(a)"), output="[[Circular]]\n")


def test_string_methods():
    src = """
print("  hi ".trim().toUpperCase())
print("Hello".toLowerCase(), "Hello".substring(1, 3), "Hello".substring(3, 1))
print("a,b,c".split(","), "hello".indexOf("l"), "hello".indexOf("z"))
"""
    assert_ok(run_pl(src), output="HI\nhello el el\n[a, b, c] 2 -1\n")


def test_string_namespace_functions():
    assert_ok(run_pl('String.toUpperCase("abc")'), value="ABC")


def test_array_methods():
    src = """
var a = [3, 1, 2]
print(a.sort().join("-"), a)
print([1, 2, 3].map(x -> x * 2), [1, 2, 3, 4].filter(x -> x % 2 == 0))
print([1, 2, 3].reverse(), [1, 2, 3, 4].slice(1, -1), [1, 2, 3].indexOf(2))
var b = []
print(b.push(1, 2), b.pop(), b)
print([10, 9, 100].sort(), ["b", "a", "c"].sort(), [3, 1, 2].sort(function (x, y) { return y - x }))
print([null, 1].join())
"""
    expected = (
        "1-2-3 [1, 2, 3]\n"
        "[2, 4, 6] [2, 4]\n"
        "[3, 2, 1] [2, 3] 1\n"
        "2 2 [1]\n"
        "[9, 10, 100] [a, b, c] [3, 2, 1]\n"
        ",1\n"
    )
    assert_ok(run_pl(src), output=expected)


def test_map_passes_the_index():
    assert_ok(run_pl('print(["a", "b"].map(function (v, i) { return v + i }))'), output="[a0, b1]\n")


def test_global_collection_builtins():
    src = """
var o = {a: 1, b: 2}
print(keys(o), values(o), len("abc"), len([1]))
var arr = [1]
push(arr, 2)
print(pop(arr), arr, pop([]))
"""
    assert_ok(run_pl(src), output="[a, b] [1, 2] 3 1\n2 [1] null\n")


def test_len_of_number_is_an_error():
    assert_error(run_pl("len(5)"), "Object of type number has no length")


def test_type_builtin():
    src = 'print(type(1), type("s"), type(true), type(null), type([]), type({}), type(print), type(x -> x))'
    assert_ok(run_pl(src), output="number string boolean null array object function function\n")


def test_conversions():
    src = """
print(parseInt("42px"), parseInt("abc"), parseInt("ff", 16), parseInt("-12.9"))
print(parseFloat("3.14abc"), parseFloat(".5"), parseFloat("x"))
print(toString(5) + toString([1]))
"""
    assert_ok(run_pl(src), output="42 NaN 255 -12\n3.14 0.5 NaN\n5[1]\n")


def test_math_functions():
    src = """
print(Math.floor(3.7), Math.ceil(3.2), Math.round(2.5), Math.round(-2.5), Math.abs(-3))
print(Math.max(1, 5, 3), Math.min(4, 2), Math.pow(2, 8), Math.sqrt(16), Math.sqrt(-1))
print(Math.max(), Math.PI > 3.14)
"""
    assert_ok(run_pl(src), output="3 4 3 -2 3\n5 2 256 4 NaN\n-Infinity true\n")


def test_math_random_is_seeded():
    first = run_pl("Math.random()", random_seed=7).value
    second = run_pl("Math.random()", random_seed=7).value
    assert first == second
    assert 0 <= first < 1


def test_math_expects_numbers():
    assert_error(run_pl('Math.floor("a")'), "Math.floor expects a number, got string")


def test_builtin_namespaces_are_read_only():
    assert_error(run_pl("Math.floor = 1"), "Cannot assign to read-only property 'floor'")


def test_builtins_can_be_shadowed():
    assert_ok(run_pl("var len = 3\nlen"), value=3.0)


def test_bad_builtin_arguments():
    assert_error(run_pl("pop()"), "Invalid arguments to pop")


def test_power_edge_cases():
    assert_ok(run_pl("print(0 ^ -1, (-8) ^ (1 / 3), (-2) ^ 3)"), output="Infinity NaN -8\n")
    assert math.isinf(run_pl("(-10) ^ 401").value)
