import functools
import math
import random
import re
import time
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from plang.plang_datatypes import (
    Environment, PLObject, PLCallable, Closure, Builtin, PLError, PLRuntimeError,
    to_pl_value, to_python, type_name,
)
from plang.plang_ast import Program
from plang.plang_lexer import tokenize
from plang.plang_parser import parse
from plang.plang_printer import Printer
from plang.plang_interpreter import (
    Evaluator, ResourceMonitor, OutputBuffer, check_identifier, check_program, is_number, is_truthy,
    strict_equals, power, _dbg,
)


# ===================================================================
# 1. Built-in functions
# ===================================================================

# Every name a script can see at start-up. Dotted names live on frozen
# namespace objects; each resolves to a StdLib method (`Math.random` ->
# `_math_random`, `parseInt` -> `_parse_int`).
BUILTINS = (
    'print', 'println', 'len', 'push', 'pop', 'keys', 'values', 'type',
    'parseInt', 'parseFloat', 'toString',
    'Math.random', 'Math.floor', 'Math.ceil', 'Math.round', 'Math.abs',
    'Math.min', 'Math.max', 'Math.pow', 'Math.sqrt',
    'String.substring', 'String.toUpperCase', 'String.toLowerCase', 'String.trim',
    'String.split', 'String.indexOf',
    'Array.join', 'Array.reverse', 'Array.sort', 'Array.slice', 'Array.indexOf',
    'Array.map', 'Array.filter',
)

CONSTANTS = {
    'Math.PI': math.pi,
    'Math.E': math.e,
}

# Array values also answer to these global builtins as methods.
ARRAY_EXTRAS = ('push', 'pop')

_CAMEL_RE = re.compile(r'(?<!^)(?=[A-Z])')
_INT_DIGITS = '0123456789abcdefghijklmnopqrstuvwxyz'
_FLOAT_PREFIX_RE = re.compile(r'^[+-]?(Infinity|(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?)')


def _method_name(pl_name: str) -> str:
    return '_' + _CAMEL_RE.sub('_', pl_name.replace('.', '_')).replace('__', '_').lower()


class StdLib:
    """Contains Python implementations for all PL built-ins."""
    def __init__(self, evaluator: Evaluator, seed: Optional[int] = None):
        self.evaluator = evaluator
        self.printer = Printer()
        self.random = random.Random(seed)
        self.functions: Dict[str, Builtin] = {
            name: Builtin(name, getattr(self, _method_name(name))) for name in BUILTINS
        }
        self.string_methods = self._namespace_members('String')
        self.array_methods = self._namespace_members('Array')
        for name in ARRAY_EXTRAS:
            self.array_methods[name] = self.functions[name]

    def _namespace_members(self, namespace: str) -> Dict[str, Builtin]:
        prefix = namespace + '.'
        return {name[len(prefix):]: fn for name, fn in self.functions.items() if name.startswith(prefix)}

    def install(self, env: Environment):
        """Binds every builtin into a (global) environment; namespaces are frozen."""
        namespaces: Dict[str, Dict[str, Any]] = {}
        for name, fn in self.functions.items():
            if '.' in name:
                ns, member = name.split('.', 1)
                namespaces.setdefault(ns, {})[member] = fn
            else:
                env.define(name, fn)
        for name, value in CONSTANTS.items():
            ns, member = name.split('.', 1)
            namespaces.setdefault(ns, {})[member] = value
        for ns, members in namespaces.items():
            env.define(ns, PLObject(members, frozen=True))

    # --- Helpers ---

    @property
    def output(self) -> OutputBuffer:
        return self.evaluator.context.output

    def _num(self, value, fname: str) -> float:
        if not is_number(value):
            raise PLRuntimeError(f"{fname} expects a number, got {type_name(value)}")
        return float(value)

    def _str(self, value, fname: str) -> str:
        if not isinstance(value, str):
            raise PLRuntimeError(f"{fname} expects a string, got {type_name(value)}")
        return value

    def _list(self, value, fname: str) -> list:
        if not isinstance(value, list):
            raise PLRuntimeError(f"{fname} expects an array, got {type_name(value)}")
        return value

    def _callback(self, fn, fname: str) -> PLCallable:
        if not isinstance(fn, PLCallable):
            raise PLRuntimeError(f"{fname} expects a function, got {type_name(fn)}")
        return fn

    # --- Output ---
    def _print(self, *args):
        self.output.write(' '.join(self.printer.stringify(a) for a in args) + '\n')

    def _println(self, *args):
        self._print(*args)

    # --- Collections ---
    def _len(self, value):
        match value:
            case list() | str():
                return float(len(value))
            case PLObject():
                return float(len(value.keys()))
        raise PLRuntimeError(f"Object of type {type_name(value)} has no length")

    def _push(self, arr, *items):
        arr = self._list(arr, 'push')
        self.evaluator.monitor.allocate(8 * len(items))
        arr.extend(items)
        return float(len(arr))

    def _pop(self, arr):
        arr = self._list(arr, 'pop')
        return arr.pop() if arr else None

    def _keys(self, obj):
        match obj:
            case PLObject():
                return list(obj.keys())
            case list():
                return [str(i) for i in range(len(obj))]
        raise PLRuntimeError(f"keys expects an object, got {type_name(obj)}")

    def _values(self, obj):
        match obj:
            case PLObject():
                return list(obj.values())
            case list():
                return list(obj)
        raise PLRuntimeError(f"values expects an object, got {type_name(obj)}")

    # --- Conversion ---
    def _type(self, value):
        return type_name(value)

    def _parse_int(self, value, radix=None):
        text = self.printer.stringify(value).strip()
        sign = 1.0
        if text[:1] in ('+', '-'):
            sign = -1.0 if text[0] == '-' else 1.0
            text = text[1:]
        base = 10
        if radix is not None and is_number(radix) and not math.isnan(radix) and int(radix) != 0:
            base = int(radix)
            if not 2 <= base <= 36:
                return math.nan
        if (radix is None or base == 16) and text[:2].lower() == '0x':
            base = 16
            text = text[2:]
        digits = ''
        for ch in text:
            d = _INT_DIGITS.find(ch.lower())
            if d < 0 or d >= base:
                break
            digits += ch
        if not digits:
            return math.nan
        return sign * float(int(digits, base))

    def _parse_float(self, value):
        m = _FLOAT_PREFIX_RE.match(self.printer.stringify(value).strip())
        if not m:
            return math.nan
        return float(m.group(0).replace('Infinity', 'inf'))

    def _to_string(self, value):
        return self.printer.stringify(value)

    # --- Math ---
    def _math_random(self):
        return self.random.random()

    def _math_floor(self, x):
        x = self._num(x, 'Math.floor')
        return float(math.floor(x)) if math.isfinite(x) else x

    def _math_ceil(self, x):
        x = self._num(x, 'Math.ceil')
        return float(math.ceil(x)) if math.isfinite(x) else x

    def _math_round(self, x):
        x = self._num(x, 'Math.round')
        return float(math.floor(x + 0.5)) if math.isfinite(x) else x

    def _math_abs(self, x):
        return abs(self._num(x, 'Math.abs'))

    def _math_min(self, *args):
        nums = [self._num(a, 'Math.min') for a in args]
        if any(math.isnan(n) for n in nums):
            return math.nan
        return min(nums, default=math.inf)

    def _math_max(self, *args):
        nums = [self._num(a, 'Math.max') for a in args]
        if any(math.isnan(n) for n in nums):
            return math.nan
        return max(nums, default=-math.inf)

    def _math_pow(self, base, exponent):
        return power(self._num(base, 'Math.pow'), self._num(exponent, 'Math.pow'))

    def _math_sqrt(self, x):
        x = self._num(x, 'Math.sqrt')
        return math.sqrt(x) if x >= 0 else math.nan

    # --- String ---
    def _string_substring(self, s, start=0.0, end=None):
        s = self._str(s, 'String.substring')

        def clamp(n):
            n = self._num(n, 'String.substring')
            if math.isnan(n):
                return 0
            return int(min(max(n, 0), len(s)))

        a = clamp(start)
        b = len(s) if end is None else clamp(end)
        if a > b:
            a, b = b, a
        return s[a:b]

    def _string_to_upper_case(self, s):
        return self._str(s, 'String.toUpperCase').upper()

    def _string_to_lower_case(self, s):
        return self._str(s, 'String.toLowerCase').lower()

    def _string_trim(self, s):
        return self._str(s, 'String.trim').strip()

    def _string_split(self, s, separator=None):
        s = self._str(s, 'String.split')
        if separator is None:
            return [s]
        separator = self._str(separator, 'String.split')
        if separator == '':
            return list(s)
        return s.split(separator)

    def _string_index_of(self, s, needle, start=0.0):
        s = self._str(s, 'String.indexOf')
        return float(s.find(self._str(needle, 'String.indexOf'), max(int(self._num(start, 'String.indexOf')), 0)))

    # --- Array ---
    def _array_join(self, arr, separator=','):
        arr = self._list(arr, 'Array.join')
        separator = self._str(separator, 'Array.join')
        return separator.join('' if v is None else self.printer.stringify(v) for v in arr)

    def _array_reverse(self, arr):
        arr = self._list(arr, 'Array.reverse')
        arr.reverse()
        return arr

    def _array_sort(self, arr, compare=None):
        arr = self._list(arr, 'Array.sort')
        if compare is not None:
            fn = self._callback(compare, 'Array.sort')

            def cmp(a, b):
                result = self.evaluator.call(fn, [a, b])
                if not is_number(result) or math.isnan(result):
                    return 0
                return -1 if result < 0 else (1 if result > 0 else 0)

            arr.sort(key=functools.cmp_to_key(cmp))
        elif all(is_number(v) for v in arr):
            arr.sort()
        else:
            arr.sort(key=self.printer.stringify)
        return arr

    def _array_slice(self, arr, start=0.0, end=None):
        arr = self._list(arr, 'Array.slice')

        def index(n):
            n = self._num(n, 'Array.slice')
            if math.isnan(n):
                return 0
            n = int(n)
            return max(len(arr) + n, 0) if n < 0 else min(n, len(arr))

        a = index(start)
        b = len(arr) if end is None else index(end)
        return arr[a:b]

    def _array_index_of(self, arr, value):
        arr = self._list(arr, 'Array.indexOf')
        for i, item in enumerate(arr):
            if strict_equals(item, value):
                return float(i)
        return -1.0

    def _callback_args(self, fn, value, i):
        # Closures also receive the index; host functions only the element.
        return [value, float(i)] if isinstance(fn, Closure) else [value]

    def _array_map(self, arr, fn):
        arr = self._list(arr, 'Array.map')
        fn = self._callback(fn, 'Array.map')
        return [self.evaluator.call(fn, self._callback_args(fn, v, i)) for i, v in enumerate(arr)]

    def _array_filter(self, arr, fn):
        arr = self._list(arr, 'Array.filter')
        fn = self._callback(fn, 'Array.filter')
        return [v for i, v in enumerate(arr) if is_truthy(self.evaluator.call(fn, self._callback_args(fn, v, i)))]


# ===================================================================
# 2. Configuration
# ===================================================================

@dataclass
class ExecutionOptions:
    """Resource limits and start-up bindings for one execution context."""
    timeout_ms: float = 5000
    memory_limit_bytes: int = 50 * 1024 * 1024
    max_output_length: int = 10000
    max_call_depth: int = 100
    max_steps: Optional[int] = None
    random_seed: Optional[int] = None
    preset_globals: Dict[str, Any] = field(default_factory=dict)

    # Host wire names accepted by from_mapping.
    ALIASES = {
        'timeout': 'timeout_ms',
        'timeoutMs': 'timeout_ms',
        'memoryLimit': 'memory_limit_bytes',
        'memoryLimitBytes': 'memory_limit_bytes',
        'maxOutputLength': 'max_output_length',
        'maxCallDepth': 'max_call_depth',
        'maxSteps': 'max_steps',
        'randomSeed': 'random_seed',
        'presetGlobals': 'preset_globals',
        'globals': 'preset_globals',
    }

    def __post_init__(self):
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        if self.memory_limit_bytes <= 0:
            raise ValueError("memory_limit_bytes must be positive")
        if self.max_output_length < 0:
            raise ValueError("max_output_length must not be negative")
        if self.max_call_depth < 1:
            raise ValueError("max_call_depth must be at least 1")

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]]) -> 'ExecutionOptions':
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in (data or {}).items():
            name = cls.ALIASES.get(key, key)
            if name not in known:
                raise ValueError(f"Unknown execution option: {key!r}")
            kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'ExecutionOptions':
        """Reads options from a JSON or YAML file."""
        from plang.plang_serialize import deserialize, format_for_path
        p = Path(path)
        data = deserialize(p.read_text(encoding='utf-8'), fmt=format_for_path(p))
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"Options file {p} must contain a mapping")
        return cls.from_mapping(data)

    def replace(self, **changes) -> 'ExecutionOptions':
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update(changes)
        return ExecutionOptions(**values)


# ===================================================================
# 3. Execution context
# ===================================================================

class ExecutionContext:
    """Everything one isolated execution owns: globals, output, limits and evaluator.

    Lifecycle: 'fresh' (never run) -> 'running' (holds state from a run) ->
    'failed' (last run raised) -> 'cleaned' (globals discarded).
    """
    def __init__(self, options: ExecutionOptions):
        self.options = options
        self.state = 'fresh'
        self.output = OutputBuffer(options.max_output_length)
        self.monitor = ResourceMonitor(options.timeout_ms, options.memory_limit_bytes,
                                       options.max_call_depth, options.max_steps)
        self.evaluator = Evaluator(self)
        self.stdlib = StdLib(self.evaluator, seed=options.random_seed)
        self.evaluator.stdlib = self.stdlib
        self.globals = self._builtin_globals()
        for name, value in options.preset_globals.items():
            check_identifier(name)
            self.globals.define(name, to_pl_value(value))

    def _builtin_globals(self) -> Environment:
        env = Environment()
        self.stdlib.install(env)
        return env

    def reset(self):
        """Back to builtins only; preset globals are not reinstalled."""
        self.globals = self._builtin_globals()
        self.output.clear()
        self.evaluator.call_stack.clear()
        self.monitor.start()
        self.state = 'fresh'


# ===================================================================
# 4. Script execution
# ===================================================================

@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Any = None
    output: str = ''
    truncated: bool = False
    error: Optional[PLError] = None
    error_message: Optional[str] = None
    stacktrace: List[Dict[str, Any]] = field(default_factory=list)
    elapsed_ms: float = 0.0
    source: Optional[str] = None

    @property
    def native_value(self) -> Any:
        """The result value as plain Python data."""
        return to_python(self.value)

    def format_error(self) -> str:
        """Formats the error with its location, a source excerpt and the PL stacktrace."""
        if self.status != 'error':
            return ""
        err = self.error
        msg = str(self.error_message or "Unknown error")
        if err is not None and err.line is not None:
            msg = f"{msg} (line {err.line}, col {err.column})"
            context = source_context(self.source or "", err.line, err.column)
            if context:
                msg = f"{msg}\n{context}"
        st = format_stacktrace(self.stacktrace)
        if st:
            msg += "\n" + st
        return msg


def source_context(source: str, line: int, col: Optional[int], radius: int = 2) -> str:
    lines = source.splitlines()
    if not line or line < 1 or line > len(lines):
        return ""
    start = max(1, line - radius)
    end = min(len(lines), line + radius)
    width = len(str(end))
    out = []
    for i in range(start, end + 1):
        prefix = ">" if i == line else " "
        ln = str(i).rjust(width)
        out.append(f"{prefix} {ln} | {lines[i - 1]}")
        if i == line and col is not None:
            caret = " " * max(col - 1, 0)
            out.append(f"  {' ' * width} | {caret}^")
    return "\n".join(out)


def format_stacktrace(stack: List[Dict[str, Any]], limit: int = 10) -> str:
    if not stack:
        return ""
    pf = Printer().pformat
    frames = []
    for frame in stack[-limit:]:
        args = " ".join(pf(a) for a in frame.get('args', []))
        frames.append(f"({frame['name']}{' ' + args if args else ''})")
    if len(stack) > limit:
        frames.insert(0, f"... {len(stack) - limit} more")
    return "PL stacktrace: " + " ".join(frames)


class PLExecutor:
    """Runs PL programs inside one persistent, isolated execution context."""

    def __init__(self, options: Optional[ExecutionOptions] = None):
        self.options = options or ExecutionOptions()
        self.context = ExecutionContext(self.options)

    @property
    def state(self) -> str:
        return self.context.state

    @property
    def output(self) -> str:
        return self.context.output.getvalue()

    def execute(self, program: Union[str, Program], source: Optional[str] = None) -> ExecutionResult:
        """Executes source or a parsed Program.

        Raises the classified PLError on failure, with the output produced
        so far attached as `.output`.
        """
        self.context.evaluator.call_stack.clear()
        if isinstance(program, str):
            source = program
            program = parse(tokenize(program))
        check_program(program)

        ctx = self.context
        if ctx.state == 'cleaned':
            ctx.reset()
        ctx.output.clear()
        ctx.monitor.start()
        ctx.state = 'running'
        _dbg("PLExecutor.execute", "statements", len(program.body))
        try:
            value = ctx.evaluator.execute(program)
        except PLError as e:
            ctx.state = 'failed'
            e.output = ctx.output.getvalue()
            raise
        except Exception as e:
            ctx.state = 'failed'
            err = PLRuntimeError(f"Internal error: {e}")
            err.output = ctx.output.getvalue()
            raise err from e
        return ExecutionResult(
            status='success',
            value=value,
            output=ctx.output.getvalue(),
            truncated=ctx.output.truncated,
            elapsed_ms=ctx.monitor.elapsed_ms,
            source=source,
        )

    def run(self, source: str) -> ExecutionResult:
        """Like execute, but failures come back as an error result instead of raising."""
        started = time.monotonic()
        try:
            return self.execute(source)
        except PLError as e:
            return ExecutionResult(
                status='error',
                output=e.output,
                truncated=self.context.output.truncated,
                error=e,
                error_message=f"{e.kind}: {e.message}",
                stacktrace=list(self.context.evaluator.call_stack),
                elapsed_ms=(time.monotonic() - started) * 1000.0,
                source=source,
            )

    def get_variable(self, name: str) -> Any:
        """Reads a global as plain Python data (None when unbound)."""
        if name not in self.context.globals:
            return None
        return to_python(self.context.globals.get(name))

    def set_variable(self, name: str, value: Any):
        check_identifier(name)
        self.context.globals.define(name, to_pl_value(value))

    def variables(self) -> Dict[str, Any]:
        """User-visible globals, excluding the builtin table."""
        builtins = {n.split('.')[0] for n in BUILTINS + tuple(CONSTANTS)}
        return {k: to_python(v) for k, v in self.context.globals.bindings.items() if k not in builtins}

    def reset(self):
        """Back to a fresh, builtin-only global environment."""
        self.context.reset()

    def cleanup(self):
        """Discards the global environment and output. Safe to call repeatedly."""
        ctx = self.context
        if ctx.state == 'cleaned':
            return
        ctx.globals = Environment()
        ctx.output.clear()
        ctx.evaluator.call_stack.clear()
        ctx.state = 'cleaned'
