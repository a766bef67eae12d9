"""
PL: a small, sandboxed scripting language with a tree-walking interpreter.
"""
from typing import Optional

from plang.plang_datatypes import (
    PLError, PLSyntaxError, PLRuntimeError, SecurityError, PLTimeoutError, QuotaExceededError,
)
from plang.plang_lexer import Token, TokenType
from plang.plang_lexer import tokenize
from plang.plang_parser import parse as _parse_tokens
from plang.plang_runtime import ExecutionOptions, ExecutionResult, PLExecutor
from plang.plang_compiler import (
    VERSION, Compiler, CompileOptions, CompileResult, CompiledProgram, ValidationResult,
    EvaluationResult, PLSession,
)

_default_compiler = Compiler()


def parse(source):
    """Parses source text (or an already tokenized list) into a Program."""
    if isinstance(source, str):
        source = tokenize(source)
    return _parse_tokens(source)


def compile(source: str, options: Optional[CompileOptions] = None) -> CompileResult:
    return _default_compiler.compile(source, options)


def validate(source: str) -> ValidationResult:
    return _default_compiler.validate(source)


def format_source(source: str, minify: bool = False) -> str:
    return _default_compiler.format(source, minify=minify)


def execute(source: str, options: Optional[ExecutionOptions] = None) -> ExecutionResult:
    return _default_compiler.execute(source, options)


async def execute_async(source: str, options: Optional[ExecutionOptions] = None) -> ExecutionResult:
    return await _default_compiler.execute_async(source, options)


def create_session(options: Optional[ExecutionOptions] = None) -> PLSession:
    return _default_compiler.create_session(options)


def cleanup(executor: PLExecutor):
    _default_compiler.cleanup(executor)


__all__ = [
    "VERSION", "tokenize", "parse", "compile", "validate", "format_source",
    "execute", "execute_async", "create_session", "cleanup",
    "Compiler", "CompileOptions", "CompileResult", "CompiledProgram", "ValidationResult",
    "EvaluationResult", "PLSession", "PLExecutor", "ExecutionOptions", "ExecutionResult",
    "Token", "TokenType",
    "PLError", "PLSyntaxError", "PLRuntimeError", "SecurityError", "PLTimeoutError",
    "QuotaExceededError",
]
