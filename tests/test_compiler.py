import json

import pytest
import yaml

import plang
from plang import (
    Compiler, CompileOptions, ExecutionOptions, PLRuntimeError, PLSyntaxError, PLTimeoutError,
)
from plang.plang_compiler import find_warnings, runtime_header, VERSION


SAMPLE = """
function fact(n) { if (n <= 1) { return 1 } else { return n * fact(n - 1) } }
var xs = [1, 2, 3].map(x -> x ^ 2)
var o = {a: 1, "b c": -2, f: function (y) { return y }}
for (var i = 0; i < 3; i += 1) if (i == 1) continue
while (false) {}
switch (o.a) { case 1: print("one"); break
default: print("d") }
print((1 + 2) * 3, -(-1), not (a or b), (x -> x)(1), a if b else c)
"""

PROGRAM = """
function fib(n) {
  if (n < 2) return n
  return fib(n - 1) + fib(n - 2)
}
var squares = [1, 2, 3, 4].map(x -> x * x).filter(x -> x > 4)
var word = "pl"
for (var i = 0; i < 3; i += 1) {
  word = word + i
}
print(fib(10), squares, word.toUpperCase(), {k: [true, null]})
"""


def test_compile_adds_runtime_header():
    result = Compiler().compile("var x = 1\nprint(x + 2)")
    assert result.success
    lines = result.code.splitlines()
    assert lines[0] == f"// PL runtime {VERSION}"
    assert lines[1].startswith("// builtins: print, println, len")
    assert lines[2:] == ["var x = 1", "print(x + 2)"]
    assert result.errors == [] and result.warnings == []


def test_compile_without_header():
    options = CompileOptions(include_runtime_wrapper=False)
    assert Compiler().compile("var   x=1+2*3", options).code == "var x = 1 + 2 * 3"


def test_minified_output():
    options = CompileOptions(minify=True, include_runtime_wrapper=False)
    result = Compiler().compile("var x = 1\nprint(x + 2)\nif (x) { x = 2 } else { x = 3 }", options)
    assert result.code == "var x=1;print(x+2);if(x){x=2;}else {x=3;}"
    assert result.artifact.minified


def test_compiled_code_runs_like_the_source():
    compiler = Compiler()
    expected = compiler.execute(PROGRAM).output
    assert expected == "55 [9, 16] PL012 {k: [true, null]}\n"
    for options in (CompileOptions(), CompileOptions(minify=True)):
        code = compiler.compile(PROGRAM, options).code
        assert compiler.execute(code).output == expected


def test_compile_reports_syntax_errors():
    result = Compiler().compile("var = 1")
    assert not result.success
    assert result.artifact is None
    assert result.code == ""
    assert result.errors == ["Expected variable name, found '=' at line 1, column 5"]
    assert (result.diagnostics[0].line, result.diagnostics[0].column) == (1, 5)


def test_compile_reports_lexer_errors():
    result = Compiler().compile('print("oops)')
    assert result.errors == ["Unterminated string at line 1, column 7"]


def test_compile_reports_deep_nesting():
    result = Compiler().compile("+".join(["1"] * 1500))
    assert not result.success
    assert result.errors[0].startswith("Expression nested too deeply at line 1")


def test_compile_maps_recursion_while_rendering(monkeypatch):
    def too_deep(program):
        raise RecursionError("maximum recursion depth exceeded")
    monkeypatch.setattr(plang.plang_compiler, "find_warnings", too_deep)
    result = Compiler().compile("var x = 1")
    assert result.artifact is None
    assert result.errors == ["Expression nested too deeply at line 1, column 1"]
    validation = Compiler().validate("var x = 1")
    assert not validation.valid
    assert validation.errors[0].message == "Expression nested too deeply"


def test_compile_warnings():
    src = """function f(a, a) {
  return 1
  print(2)
}
const limit
while (true) { break; print(3) }"""
    result = Compiler().compile(src)
    assert result.success
    assert result.warnings == [
        "Duplicate parameter name 'a' in function 'f' at line 1, column 15",
        "Unreachable code after 'return' at line 3, column 3",
        "Constant 'limit' declared without an initializer at line 5, column 7",
        "Unreachable code after 'break' at line 6, column 23",
    ]


def test_find_warnings_in_switch_cases():
    program = plang.parse("switch (x) { case 1: return 2; print(1) }")
    assert [str(w) for w in find_warnings(program)] == [
        "Unreachable code after 'return' at line 1, column 32",
    ]


def test_source_map():
    options = CompileOptions(source_map=True, source_name="demo.pl")
    result = Compiler().compile("var x = 1\n\nif (x) {\n  print(x)\n}", options)
    smap = result.source_map
    assert smap['version'] == 3
    assert smap['sources'] == ["demo.pl"]
    assert smap['file'] == "demo.out.pl"
    assert smap['names'] == ["print", "x"]
    header = len(runtime_header())
    assert smap['mappings'] == [
        {'generated': {'line': header + 1, 'column': 1}, 'original': {'line': 1, 'column': 1}, 'source': 0},
        {'generated': {'line': header + 2, 'column': 1}, 'original': {'line': 3, 'column': 1}, 'source': 0},
        {'generated': {'line': header + 3, 'column': 3}, 'original': {'line': 4, 'column': 3}, 'source': 0},
    ]


def test_source_map_for_minified_output():
    options = CompileOptions(source_map=True, minify=True, include_runtime_wrapper=False)
    result = Compiler().compile("var x = 1\nprint(x)", options)
    assert [m['generated'] for m in result.source_map['mappings']] == [
        {'line': 1, 'column': 1},
        {'line': 1, 'column': 9},
    ]


def test_no_source_map_unless_requested():
    assert Compiler().compile("1").source_map is None


def test_compile_result_to_dict():
    data = Compiler().compile("1", CompileOptions(include_runtime_wrapper=False)).to_dict()
    assert data == {'code': "1", 'errors': [], 'warnings': [], 'sourceMap': None}


def test_export_ast():
    artifact = Compiler().compile("var x = 1").artifact
    tree = json.loads(artifact.export())
    assert tree['type'] == "Program"
    assert tree['body'][0]['type'] == "VariableDeclaration"
    assert tree['body'][0]['declarations'][0]['init']['value'] == 1
    assert yaml.safe_load(artifact.export('yaml'))['body'][0]['kind'] == "var"


def test_validate_valid_program():
    result = Compiler().validate(PROGRAM)
    assert result.valid
    assert result.errors == []
    assert result.ast is not None


def test_validate_reports_every_error():
    result = Compiler().validate("var = 1\nvar y = 2\n)\nconst z")
    assert not result.valid
    assert [(e.line, e.column) for e in result.errors] == [(1, 5), (3, 1)]
    assert [str(w) for w in result.warnings] == [
        "Constant 'z' declared without an initializer at line 4, column 7",
    ]


def test_validate_lexer_error():
    result = Compiler().validate("var x = 1 @ 2")
    assert not result.valid
    assert result.errors[0].message == "Unexpected character '@'"


def test_format():
    compiler = Compiler()
    assert compiler.format("var   x=1+2*3") == "var x = 1 + 2 * 3"
    assert compiler.format("if (a) {b=1} else {c=2}") == "if (a) {\n  b = 1\n} else {\n  c = 2\n}"
    assert compiler.format("while(x){}") == "while (x) {}"


def test_format_rejects_invalid_source():
    with pytest.raises(PLSyntaxError):
        Compiler().format("var = 1")


def test_format_rejects_deep_nesting(monkeypatch):
    with pytest.raises(PLSyntaxError, match="nested too deeply"):
        Compiler().format("[" * 300 + "]" * 300)

    def too_deep(self, obj, level=0):
        raise RecursionError("maximum recursion depth exceeded")
    monkeypatch.setattr(plang.plang_compiler.Printer, "pformat", too_deep)
    with pytest.raises(PLSyntaxError, match="nested too deeply"):
        Compiler().format("var x = 1")


@pytest.mark.parametrize("minify", [False, True])
def test_formatting_preserves_the_tree(minify):
    compiler = Compiler()
    formatted = compiler.format(SAMPLE, minify=minify)
    assert compiler.parse(formatted) == compiler.parse(SAMPLE)
    assert compiler.format(formatted, minify=minify) == formatted


def test_execute_uses_a_fresh_context():
    compiler = Compiler()
    compiler.execute("var leaked = 1")
    with pytest.raises(PLRuntimeError) as exc:
        compiler.execute('print("partial")\nleaked')
    assert exc.value.output == "partial\n"


def test_execute_accepts_option_mappings():
    assert Compiler().execute("limit + 1", {"globals": {"limit": 2}}).value == 3.0


def test_compiler_default_options():
    compiler = Compiler(ExecutionOptions(preset_globals={"answer": 42}))
    assert compiler.execute("answer").value == 42.0
    assert compiler.create_executor().execute("answer").value == 42.0


@pytest.mark.asyncio
async def test_execute_async():
    result = await Compiler().execute_async("print(1)\n1 + 2")
    assert result.value == 3.0
    assert result.output == "1\n"


@pytest.mark.asyncio
async def test_execute_async_timeout():
    with pytest.raises(PLTimeoutError):
        await Compiler().execute_async("while (true) {}", ExecutionOptions(timeout_ms=100))


def test_module_level_api():
    assert plang.format_source("print( 1 )") == "print(1)"
    assert plang.validate("print(1)").valid
    assert plang.compile("1").success
    assert plang.execute("2 * 3").value == 6.0
    assert [t.type.name for t in plang.tokenize("a")] == ["IDENTIFIER", "EOF"]
    ex = plang.PLExecutor()
    ex.execute("var x = 1")
    plang.cleanup(ex)
    assert ex.state == 'cleaned'


@pytest.mark.asyncio
async def test_module_level_execute_async():
    result = await plang.execute_async('"a" + "b"')
    assert result.value == "ab"
