"""
The public face of PL: compile, validate, format and execute source text,
plus persistent sessions for REPL-style use.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from plang.plang_ast import (
    Node, Program, Block, ReturnStatement, BreakStatement, ContinueStatement,
    VariableDeclaration, FunctionDeclaration, FunctionExpression, ArrowFunctionExpression,
    SwitchStatement, Identifier, walk,
)
from plang.plang_datatypes import PLError, PLSyntaxError, PLRuntimeError, PLTimeoutError
from plang.plang_lexer import Token, tokenize
from plang.plang_parser import parse, parse_with_recovery
from plang.plang_printer import Printer
from plang.plang_runtime import BUILTINS, ExecutionOptions, ExecutionResult, PLExecutor
from plang.plang_interpreter import _dbg

VERSION = "0.1.0"

# Extra seconds a host-side wait allows beyond the cooperative timeout.
_ASYNC_GRACE_S = 0.5


def nesting_error() -> PLSyntaxError:
    return PLSyntaxError("Expression nested too deeply", 1, 1)


@dataclass
class CompileOptions:
    source_map: bool = False
    minify: bool = False
    include_runtime_wrapper: bool = True
    source_name: str = "input.pl"


@dataclass
class Diagnostic:
    severity: str  # 'error' | 'warning'
    message: str
    line: Optional[int] = None
    column: Optional[int] = None

    def __str__(self):
        if self.line is None:
            return self.message
        return f"{self.message} at line {self.line}, column {self.column}"


@dataclass
class CompiledProgram:
    """A checked program and its canonical PL rendering."""
    program: Program
    code: str
    minified: bool = False

    def export(self, fmt: str = 'json') -> str:
        """The AST as JSON or YAML text."""
        from plang.plang_serialize import serialize
        return serialize(self.program, fmt=fmt)


@dataclass
class CompileResult:
    artifact: Optional[CompiledProgram]
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    source_map: Optional[Dict[str, Any]] = None
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def code(self) -> str:
        return self.artifact.code if self.artifact is not None else ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'errors': list(self.errors),
            'warnings': list(self.warnings),
            'sourceMap': self.source_map,
        }


@dataclass
class ValidationResult:
    valid: bool
    errors: List[Diagnostic] = field(default_factory=list)
    warnings: List[Diagnostic] = field(default_factory=list)
    ast: Optional[Program] = None


@dataclass
class EvaluationResult:
    output: str = ''
    errors: List[str] = field(default_factory=list)
    value: Any = None
    error: Optional[PLError] = None

    @property
    def ok(self) -> bool:
        return not self.errors


# ===================================================================
# Static checks
# ===================================================================

def find_warnings(program: Program) -> List[Diagnostic]:
    """Unreachable statements, const without initializer, duplicate parameter names."""
    found: List[Diagnostic] = []

    def check_sequence(statements):
        for i, stmt in enumerate(statements[:-1]):
            if isinstance(stmt, (ReturnStatement, BreakStatement, ContinueStatement)):
                nxt = statements[i + 1]
                keyword = type(stmt).__name__.replace('Statement', '').lower()
                found.append(Diagnostic('warning', f"Unreachable code after '{keyword}'", nxt.line, nxt.column))
                break

    for node in walk(program):
        match node:
            case Program() | Block():
                check_sequence(node.body)
            case SwitchStatement():
                for case in node.cases:
                    check_sequence(case.consequent)
            case VariableDeclaration(kind='const'):
                for d in node.declarations:
                    if d.init is None:
                        found.append(Diagnostic(
                            'warning', f"Constant '{d.id.name}' declared without an initializer",
                            d.line, d.column))
        if isinstance(node, (FunctionDeclaration, FunctionExpression, ArrowFunctionExpression)):
            seen = set()
            for p in node.params:
                if p.name in seen:
                    fname = getattr(getattr(node, 'id', None), 'name', None) or 'anonymous'
                    found.append(Diagnostic(
                        'warning', f"Duplicate parameter name '{p.name}' in function '{fname}'",
                        p.line, p.column))
                seen.add(p.name)
    return found


def runtime_header() -> List[str]:
    return [
        f"// PL runtime {VERSION}",
        f"// builtins: {', '.join(BUILTINS)}",
    ]


def build_source_map(lines: List[Tuple[str, int, Optional[Node]]], *, source_name: str,
                     line_offset: int, indent_width: int, minified: bool) -> Dict[str, Any]:
    """A version-3 style map from generated positions back to source positions."""
    mappings = []
    names = set()
    column = 1
    for index, (text, level, node) in enumerate(lines):
        gen_line = line_offset + (1 if minified else index + 1)
        gen_column = column if minified else level * indent_width + 1
        if node is not None:
            mappings.append({
                'generated': {'line': gen_line, 'column': gen_column},
                'original': {'line': node.line, 'column': node.column},
                'source': 0,
            })
            names.update(n.name for n in walk(node) if isinstance(n, Identifier))
        column += len(text)
    return {
        'version': 3,
        'file': source_name.rsplit('.', 1)[0] + '.out.pl',
        'sources': [source_name],
        'names': sorted(names),
        'mappings': mappings,
    }


# ===================================================================
# Compiler
# ===================================================================

class Compiler:
    """Entry point for every PL operation a host needs."""

    def __init__(self, options: Optional[ExecutionOptions] = None):
        self.options = options or ExecutionOptions()

    def tokenize(self, source: str) -> List[Token]:
        return tokenize(source)

    def parse(self, source: str) -> Program:
        return parse(tokenize(source))

    def compile(self, source: str, options: Optional[CompileOptions] = None) -> CompileResult:
        """Checks source and renders the canonical program. Syntax errors are reported, not raised."""
        opts = options or CompileOptions()
        printer = Printer(minify=opts.minify)
        try:
            program = self.parse(source)
            warnings = find_warnings(program)
            body, lines = printer.render(program)
        except PLSyntaxError as e:
            return self._failed(e)
        except RecursionError:
            return self._failed(nesting_error())

        header = runtime_header() if opts.include_runtime_wrapper else []
        code = '\n'.join(header + [body]) if header else body
        source_map = None
        if opts.source_map:
            source_map = build_source_map(lines, source_name=opts.source_name, line_offset=len(header),
                                          indent_width=printer.indent_width, minified=opts.minify)
        _dbg("Compiler.compile", "statements", len(program.body), "warnings", len(warnings))
        return CompileResult(
            artifact=CompiledProgram(program, code, opts.minify),
            warnings=[str(w) for w in warnings],
            source_map=source_map,
            diagnostics=warnings,
        )

    @staticmethod
    def _failed(e: PLSyntaxError) -> CompileResult:
        return CompileResult(
            artifact=None,
            errors=[str(e)],
            diagnostics=[Diagnostic('error', e.message, e.line, e.column)],
        )

    def validate(self, source: str) -> ValidationResult:
        """Reports every syntax error (recovering after each) plus static warnings."""
        try:
            tokens = tokenize(source)
        except PLSyntaxError as e:
            return ValidationResult(valid=False, errors=[Diagnostic('error', e.message, e.line, e.column)])
        program, syntax_errors = parse_with_recovery(tokens)
        errors = [Diagnostic('error', e.message, e.line, e.column) for e in syntax_errors]
        try:
            warnings = find_warnings(program)
        except RecursionError:
            err = nesting_error()
            errors.append(Diagnostic('error', err.message, err.line, err.column))
            warnings = []
        return ValidationResult(valid=not errors, errors=errors, warnings=warnings, ast=program)

    def format(self, source: str, minify: bool = False) -> str:
        """Pretty-prints source. Raises PLSyntaxError for invalid input."""
        program = self.parse(source)
        try:
            return Printer(minify=minify).pformat(program)
        except RecursionError:
            raise nesting_error() from None

    # --- Execution ---

    def _options(self, options) -> ExecutionOptions:
        if options is None:
            return self.options
        if isinstance(options, dict):
            return ExecutionOptions.from_mapping(options)
        return options

    def execute(self, source: str, options: Optional[ExecutionOptions] = None) -> ExecutionResult:
        """Runs source in a fresh context. Raises the classified PLError on failure."""
        executor = self.create_executor(options)
        try:
            return executor.execute(source)
        finally:
            executor.cleanup()

    async def execute_async(self, source: str, options: Optional[ExecutionOptions] = None) -> ExecutionResult:
        """Runs source on a worker thread; the host-side wait is bounded as well."""
        opts = self._options(options)
        executor = self.create_executor(opts)
        try:
            return await run_bounded(executor.execute, source, opts.timeout_ms)
        finally:
            executor.cleanup()

    def create_executor(self, options: Optional[ExecutionOptions] = None) -> PLExecutor:
        return PLExecutor(self._options(options))

    def cleanup(self, executor: PLExecutor):
        executor.cleanup()

    def create_session(self, options: Optional[ExecutionOptions] = None) -> 'PLSession':
        return PLSession(self, self._options(options))


async def run_bounded(func, source: str, timeout_ms: float):
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, source),
                                      timeout=timeout_ms / 1000.0 + _ASYNC_GRACE_S)
    except PLError:
        raise
    except asyncio.TimeoutError:
        raise PLTimeoutError(f"Execution timed out after {timeout_ms:g}ms") from None


# ===================================================================
# Sessions
# ===================================================================

class PLSession:
    """A persistent execution context with an input history, for REPL use.

    Variables survive between evaluations (and across failed ones) until
    clear_context(). History and context are cleared independently.
    """

    def __init__(self, compiler: Compiler, options: ExecutionOptions):
        self.compiler = compiler
        self.options = options
        self.executor = compiler.create_executor(options)
        self.history: List[str] = []

    def evaluate(self, source: str) -> EvaluationResult:
        self.history.append(source)
        try:
            result = self.executor.execute(source)
        except PLError as e:
            return self._failure(e)
        except Exception as e:
            return self._failure(PLRuntimeError(f"Internal error: {e}"))
        return EvaluationResult(output=result.output, value=result.value)

    async def evaluate_async(self, source: str) -> EvaluationResult:
        self.history.append(source)
        try:
            result = await run_bounded(self.executor.execute, source, self.options.timeout_ms)
        except PLError as e:
            return self._failure(e)
        except Exception as e:
            return self._failure(PLRuntimeError(f"Internal error: {e}"))
        return EvaluationResult(output=result.output, value=result.value)

    @staticmethod
    def _failure(e: PLError) -> EvaluationResult:
        return EvaluationResult(output=e.output, errors=[f"{e.kind}: {e}"], error=e)

    def get_history(self) -> List[str]:
        return list(self.history)

    def clear_history(self):
        self.history.clear()

    def set_variable(self, name: str, value: Any):
        self.executor.set_variable(name, value)

    def get_variable(self, name: str) -> Any:
        """The global as plain Python data; raises PLRuntimeError when it cannot be converted."""
        return self.executor.get_variable(name)

    def clear_context(self):
        """Drops every user variable; builtins stay available."""
        self.executor.reset()

    def close(self):
        self.executor.cleanup()
