import math
import os
import sys
import time
from typing import Any, List, Optional, Dict, TYPE_CHECKING

from plang.plang_datatypes import (
    Environment, PLObject, PLCallable, Closure, Builtin, BoundMethod, Completion,
    PLError, PLRuntimeError, SecurityError, PLTimeoutError, QuotaExceededError,
    is_return, type_name, to_pl_value,
)
from plang.plang_ast import (
    Node, Program, Block, ExpressionStatement, IfStatement, WhileStatement, ForStatement,
    ReturnStatement, BreakStatement, ContinueStatement, VariableDeclaration,
    FunctionDeclaration, SwitchStatement, BinaryExpression, LogicalExpression,
    UnaryExpression, AssignmentExpression, ConditionalExpression, CallExpression,
    MemberExpression, Identifier, Literal, ArrayExpression, ObjectExpression,
    ArrowFunctionExpression, FunctionExpression, Property, walk,
)
from plang.plang_printer import Printer, format_number

if TYPE_CHECKING:
    from plang.plang_runtime import ExecutionContext


# Host capabilities that scripts may never name.
DENIED_IDENTIFIERS = frozenset({
    'eval', 'import', 'require', 'Function', 'fetch', 'XMLHttpRequest', 'WebSocket',
    'process', 'globalThis', 'global', 'window', 'document', '__import__', 'exec', 'open',
})

# Property names that could reach object internals.
DENIED_PROPERTIES = frozenset({
    '__proto__', 'prototype', 'constructor', 'defineProperty', 'setPrototypeOf',
    'getPrototypeOf', '__defineGetter__', '__defineSetter__',
})

# Python frames consumed per PL call level, with headroom.
_FRAMES_PER_CALL = 24


def _dbg(*parts):
    if os.environ.get("PLANG_DEBUG"):
        print("[DBG]", *parts, file=sys.stderr)


def check_identifier(name: str, node: Optional[Node] = None):
    if name in DENIED_IDENTIFIERS:
        line, column = (node.line, node.column) if node is not None else (None, None)
        raise SecurityError(f"Access to '{name}' is not allowed", line, column)


def check_property(name: Any, node: Optional[Node] = None):
    if isinstance(name, str) and (name in DENIED_PROPERTIES or name.startswith('__')):
        line, column = (node.line, node.column) if node is not None else (None, None)
        raise SecurityError(f"Access to property '{name}' is not allowed", line, column)


def check_program(program: Node):
    """Rejects denied names anywhere in the tree, including branches that never run.

    Computed keys built at run time are still checked by the evaluator.
    """
    property_names = set()
    for node in walk(program):
        match node:
            case MemberExpression(computed=False):
                property_names.add(id(node.property))
                check_property(node.property.name, node)
            case MemberExpression(property=Literal(value=str() as key)):
                check_property(key, node)
            case Identifier() if id(node) not in property_names:
                check_identifier(node.name, node)
            case Property():
                check_property(node.key, node)


def is_truthy(value: Any) -> bool:
    match value:
        case None:
            return False
        case bool():
            return value
        case float() | int():
            return value != 0 and not math.isnan(value)
        case str():
            return value != ""
    return True


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equals(a: Any, b: Any) -> bool:
    """Value equality for primitives, identity for arrays, objects and functions."""
    if type_name(a) != type_name(b):
        return False
    if a is None or isinstance(a, (bool, int, float, str)):
        return a == b
    return a is b


def estimate_size(value: Any) -> int:
    """Approximate shallow footprint in bytes, charged against the memory limit."""
    match value:
        case None | bool():
            return 8
        case int() | float():
            return 16
        case str():
            return 48 + len(value)
        case list():
            return 56 + 8 * len(value)
        case PLObject():
            return 64 + sum(32 + len(k) for k in value.keys())
        case Closure():
            return 128
    return 32


class OutputBuffer:
    """Collects print() output up to a fixed number of characters.

    Text past the limit is dropped and `truncated` is set; running out of
    room is never an error.
    """
    def __init__(self, limit: int):
        self.limit = limit
        self.truncated = False
        self._parts: List[str] = []
        self._length = 0

    def write(self, text: str):
        room = self.limit - self._length
        if len(text) > room:
            self.truncated = True
            text = text[:max(room, 0)]
        if text:
            self._parts.append(text)
            self._length += len(text)

    def getvalue(self) -> str:
        return ''.join(self._parts)

    def clear(self):
        self._parts.clear()
        self._length = 0
        self.truncated = False

    def __len__(self):
        return self._length


class ResourceMonitor:
    """Cooperative limits: wall-clock time, steps, call depth and allocated bytes."""

    def __init__(self, timeout_ms: float, memory_limit_bytes: int,
                 max_call_depth: int = 100, max_steps: Optional[int] = None):
        self.timeout_ms = timeout_ms
        self.memory_limit_bytes = memory_limit_bytes
        self.max_call_depth = max_call_depth
        self.max_steps = max_steps
        self.start()

    def start(self):
        self.started = time.monotonic()
        self.deadline = self.started + self.timeout_ms / 1000.0
        self.steps = 0
        self.call_depth = 0
        self.allocated = 0

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000.0

    def tick(self, node: Optional[Node] = None):
        self.steps += 1
        if self.max_steps is not None and self.steps > self.max_steps:
            raise self._positioned(PLTimeoutError(f"Execution exceeded {self.max_steps} steps"), node)
        if time.monotonic() > self.deadline:
            raise self._positioned(PLTimeoutError(f"Execution timed out after {self.timeout_ms:g}ms"), node)

    def allocate(self, nbytes: int, node: Optional[Node] = None):
        self.allocated += nbytes
        if self.allocated > self.memory_limit_bytes:
            raise self._positioned(
                QuotaExceededError(f"Memory limit of {self.memory_limit_bytes} bytes exceeded"), node)

    def enter_call(self, node: Optional[Node] = None):
        self.call_depth += 1
        if self.call_depth > self.max_call_depth:
            raise self._positioned(PLRuntimeError("Maximum call stack size exceeded"), node)

    def exit_call(self):
        self.call_depth -= 1

    @staticmethod
    def _positioned(err: PLError, node: Optional[Node]) -> PLError:
        if node is not None:
            err.at(node.line, node.column)
        return err


class Evaluator:
    """The PL execution engine: walks a Program against a context's global environment."""

    def __init__(self, context: 'ExecutionContext'):
        self.context = context
        self.monitor: ResourceMonitor = context.monitor
        # Installed by the owning ExecutionContext once the StdLib exists.
        self.stdlib = None
        self.printer = Printer()
        self.call_stack: List[Dict[str, Any]] = []
        self.current_node: Optional[Node] = None

    def execute(self, program: Program, env: Optional[Environment] = None) -> Any:
        """Runs a program and returns the value of the last top-level expression statement."""
        env = env if env is not None else self.context.globals
        self.call_stack.clear()
        needed = self.monitor.max_call_depth * _FRAMES_PER_CALL + 1000
        if sys.getrecursionlimit() < needed:
            sys.setrecursionlimit(needed)
        last_value = None
        try:
            for stmt in program.body:
                if isinstance(stmt, ExpressionStatement):
                    self.monitor.tick(stmt)
                    last_value = self._eval_positioned(stmt.expression, env)
                    continue
                signal = self._exec(stmt, env)
                if signal is not None:
                    self._raise_stray(signal)
        except RecursionError:
            raise PLRuntimeError("Maximum call stack size exceeded").at(
                *self._position(self.current_node)) from None
        return last_value

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _exec(self, stmt: Node, env: Environment) -> Optional[Completion]:
        self.current_node = stmt
        self.monitor.tick(stmt)
        try:
            return self._exec_node(stmt, env)
        except PLError as e:
            raise e.at(stmt.line, stmt.column)

    def _exec_node(self, stmt: Node, env: Environment) -> Optional[Completion]:
        match stmt:
            case ExpressionStatement():
                self.evaluate(stmt.expression, env)
                return None
            case VariableDeclaration():
                self._declare(stmt, env)
                return None
            case FunctionDeclaration():
                name = stmt.id.name
                check_identifier(name, stmt.id)
                env.define(name, self._make_closure(stmt.params, stmt.body, env, name, stmt))
                return None
            case Block():
                return self._exec_statements(stmt.body, env)
            case IfStatement():
                if is_truthy(self.evaluate(stmt.test, env)):
                    return self._exec(stmt.consequent, env)
                if stmt.alternate is not None:
                    return self._exec(stmt.alternate, env)
                return None
            case WhileStatement():
                return self._exec_loop(stmt.test, None, stmt.body, env, stmt)
            case ForStatement():
                loop_env = env
                if isinstance(stmt.init, VariableDeclaration):
                    loop_env = Environment(parent=env)
                    self._declare(stmt.init, loop_env)
                elif stmt.init is not None:
                    self.evaluate(stmt.init, loop_env)
                return self._exec_loop(stmt.test, stmt.update, stmt.body, loop_env, stmt)
            case ReturnStatement():
                value = self.evaluate(stmt.argument, env) if stmt.argument is not None else None
                return Completion("return", value, stmt)
            case BreakStatement():
                return Completion("break", node=stmt)
            case ContinueStatement():
                return Completion("continue", node=stmt)
            case SwitchStatement():
                return self._exec_switch(stmt, env)
        raise PLRuntimeError(f"Unknown statement type {type(stmt).__name__}", stmt.line, stmt.column)

    def _exec_statements(self, statements, env: Environment) -> Optional[Completion]:
        for stmt in statements:
            signal = self._exec(stmt, env)
            if signal is not None:
                return signal
        return None

    def _exec_loop(self, test, update, body, env: Environment, node: Node) -> Optional[Completion]:
        while True:
            self.monitor.tick(node)
            if test is not None and not is_truthy(self.evaluate(test, env)):
                return None
            signal = self._exec(body, env)
            if signal is not None:
                if signal.kind == "break":
                    return None
                if signal.kind == "return":
                    return signal
            if update is not None:
                self.evaluate(update, env)

    def _exec_switch(self, stmt: SwitchStatement, env: Environment) -> Optional[Completion]:
        discriminant = self.evaluate(stmt.discriminant, env)
        start = None
        for i, case in enumerate(stmt.cases):
            if case.test is not None and strict_equals(self.evaluate(case.test, env), discriminant):
                start = i
                break
        if start is None:
            start = next((i for i, c in enumerate(stmt.cases) if c.test is None), None)
        if start is None:
            return None
        for case in stmt.cases[start:]:
            signal = self._exec_statements(case.consequent, env)
            if signal is not None:
                if signal.kind == "break":
                    return None
                return signal
        return None

    def _declare(self, decl: VariableDeclaration, env: Environment):
        for d in decl.declarations:
            name = d.id.name
            check_identifier(name, d.id)
            value = self.evaluate(d.init, env) if d.init is not None else None
            if decl.kind == 'const':
                if name in env.bindings:
                    raise PLRuntimeError(f"Identifier '{name}' has already been declared", d.line, d.column)
                env.define(name, value, constant=True)
            else:
                env.define(name, value)

    def _raise_stray(self, signal: Completion):
        line, column = self._position(signal.node)
        if signal.kind == "return":
            raise PLRuntimeError("Illegal return outside of function", line, column)
        raise PLRuntimeError(f"Illegal {signal.kind} outside of loop", line, column)

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def _eval_positioned(self, node: Node, env: Environment) -> Any:
        try:
            return self.evaluate(node, env)
        except PLError as e:
            raise e.at(node.line, node.column)

    def evaluate(self, node: Node, env: Environment) -> Any:
        match node:
            case Literal():
                return node.value
            case Identifier():
                check_identifier(node.name, node)
                try:
                    return env.get(node.name)
                except PLError as e:
                    raise e.at(node.line, node.column)
            case BinaryExpression():
                left = self.evaluate(node.left, env)
                right = self.evaluate(node.right, env)
                return self.binary_op(node.operator, left, right, node)
            case LogicalExpression():
                left = self.evaluate(node.left, env)
                if node.operator == 'and':
                    return self.evaluate(node.right, env) if is_truthy(left) else left
                return left if is_truthy(left) else self.evaluate(node.right, env)
            case UnaryExpression():
                return self._unary(node, self.evaluate(node.argument, env))
            case AssignmentExpression():
                return self._assign(node, env)
            case ConditionalExpression():
                if is_truthy(self.evaluate(node.test, env)):
                    return self.evaluate(node.consequent, env)
                return self.evaluate(node.alternate, env)
            case CallExpression():
                return self._call_expression(node, env)
            case MemberExpression():
                if not node.computed:
                    check_property(node.property.name, node)
                obj = self.evaluate(node.object, env)
                return self.get_member(obj, self._member_key(node, env), node)
            case ArrayExpression():
                values = [self.evaluate(e, env) for e in node.elements]
                self.monitor.allocate(estimate_size(values), node)
                return values
            case ObjectExpression():
                obj = PLObject()
                for prop in node.properties:
                    check_property(prop.key, prop)
                    obj[prop.key] = self.evaluate(prop.value, env)
                self.monitor.allocate(estimate_size(obj), node)
                return obj
            case ArrowFunctionExpression():
                return self._make_closure(node.params, node.body, env, None, node)
            case FunctionExpression():
                name = node.id.name if node.id is not None else None
                if node.id is None:
                    return self._make_closure(node.params, node.body, env, None, node)
                # A named function expression can refer to itself.
                check_identifier(name, node.id)
                own_env = Environment(parent=env)
                closure = self._make_closure(node.params, node.body, own_env, name, node)
                own_env.define(name, closure, constant=True)
                return closure
        raise PLRuntimeError(f"Unknown expression type {type(node).__name__}", node.line, node.column)

    def _member_key(self, node: MemberExpression, env: Environment) -> Any:
        if node.computed:
            return self.evaluate(node.property, env)
        return node.property.name

    def binary_op(self, op: str, left: Any, right: Any, node: Optional[Node] = None) -> Any:
        match op:
            case '+':
                if is_number(left) and is_number(right):
                    return left + right
                if isinstance(left, str) or isinstance(right, str):
                    a, b = self.printer.stringify(left), self.printer.stringify(right)
                    self.monitor.allocate(48 + min(len(a), len(b)), node)
                    return a + b
            case '-' | '*' | '/' | '%' | '^' if is_number(left) and is_number(right):
                return self._arithmetic(op, float(left), float(right), node)
            case '==':
                return strict_equals(left, right)
            case '!=':
                return not strict_equals(left, right)
            case '<' | '>' | '<=' | '>=' if (is_number(left) and is_number(right)) or \
                                              (isinstance(left, str) and isinstance(right, str)):
                match op:
                    case '<':
                        return left < right
                    case '>':
                        return left > right
                    case '<=':
                        return left <= right
                    case '>=':
                        return left >= right
        raise self._error(
            f"Cannot apply operator '{op}' to {type_name(left)} and {type_name(right)}", node)

    def _arithmetic(self, op: str, a: float, b: float, node: Optional[Node]) -> float:
        match op:
            case '-':
                return a - b
            case '*':
                return a * b
            case '/' | '%' if b == 0:
                raise self._error("Division by zero", node)
            case '/':
                return a / b
            case '%':
                return math.fmod(a, b)
        return power(a, b)

    def _unary(self, node: UnaryExpression, value: Any) -> Any:
        if node.operator == 'not':
            return not is_truthy(value)
        if not is_number(value):
            raise self._error(f"Cannot apply unary '{node.operator}' to {type_name(value)}", node)
        return -float(value) if node.operator == '-' else float(value)

    def _assign(self, node: AssignmentExpression, env: Environment) -> Any:
        target = node.left
        if isinstance(target, Identifier):
            check_identifier(target.name, target)
            value = self.evaluate(node.right, env)
            if node.operator != '=':
                current = self.evaluate(target, env)
                value = self.binary_op(node.operator[0], current, value, node)
            try:
                env.assign(target.name, value)
            except PLError as e:
                raise e.at(target.line, target.column)
            return value

        if not target.computed:
            check_property(target.property.name, target)
        obj = self.evaluate(target.object, env)
        key = self._member_key(target, env)
        value = self.evaluate(node.right, env)
        if node.operator != '=':
            current = self.get_member(obj, key, target)
            value = self.binary_op(node.operator[0], current, value, node)
        self.set_member(obj, key, value, target)
        return value

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    def get_member(self, obj: Any, key: Any, node: Optional[Node] = None) -> Any:
        check_property(key, node)
        if obj is None:
            raise self._error(f"Cannot read property '{self.printer.stringify(key)}' of null", node)
        match obj:
            case list() | str():
                if is_number(key):
                    index = self._index(key)
                    if index is None or index >= len(obj):
                        return None
                    return obj[index]
                if key == 'length':
                    return float(len(obj))
                methods = self.stdlib.array_methods if isinstance(obj, list) else self.stdlib.string_methods
                method = methods.get(key)
                return BoundMethod(obj, method) if method is not None else None
            case PLObject():
                return obj.get(self._object_key(key))
        raise self._error(
            f"Cannot read property '{self.printer.stringify(key)}' of {type_name(obj)}", node)

    def set_member(self, obj: Any, key: Any, value: Any, node: Optional[Node] = None):
        check_property(key, node)
        match obj:
            case list() if is_number(key):
                index = self._index(key)
                if index is None or index > len(obj):
                    raise self._error(f"Invalid array index {self.printer.stringify(key)}", node)
                if index == len(obj):
                    self.monitor.allocate(8, node)
                    obj.append(value)
                else:
                    obj[index] = value
                return
            case PLObject():
                name = self._object_key(key)
                if name not in obj:
                    self.monitor.allocate(32 + len(name), node)
                try:
                    obj[name] = value
                except PLError as e:
                    raise e.at(*self._position(node))
                return
        raise self._error(
            f"Cannot set property '{self.printer.stringify(key)}' of {type_name(obj)}", node)

    @staticmethod
    def _index(key: float) -> Optional[int]:
        if math.isnan(key) or math.isinf(key) or not float(key).is_integer() or key < 0:
            return None
        return int(key)

    def _object_key(self, key: Any) -> str:
        if is_number(key):
            return format_number(key)
        return key if isinstance(key, str) else self.printer.stringify(key)

    # ------------------------------------------------------------------
    # Functions
    # ------------------------------------------------------------------

    def _make_closure(self, params, body, env: Environment, name: Optional[str], node: Node) -> Closure:
        for p in params:
            check_identifier(p.name, p)
        closure = Closure([p.name for p in params], body, env, name)
        self.monitor.allocate(estimate_size(closure), node)
        return closure

    def _call_expression(self, node: CallExpression, env: Environment) -> Any:
        func = self.evaluate(node.callee, env)
        args = [self.evaluate(a, env) for a in node.arguments]
        if not isinstance(func, PLCallable):
            raise self._error(f"{self._describe_callee(node.callee)} is not a function", node)
        return self.call(func, args, node)

    def call(self, func: PLCallable, args: List[Any], node: Optional[Node] = None) -> Any:
        """Invokes a PL function value; also used by builtins that take callbacks."""
        self.monitor.tick(node)
        if isinstance(func, Closure):
            return self._call_closure(func, args, node)
        _dbg("Builtin call", func.name, "argc", len(args))
        try:
            result = func(*args)
        except (TypeError, ValueError, IndexError, AttributeError) as e:
            _dbg("Builtin error", func.name, repr(e))
            raise self._error(f"Invalid arguments to {func.name}", node) from None
        match result:
            case bool() | None:
                return result
            case int():
                return float(result)
            case list() | str() | PLObject():
                self.monitor.allocate(estimate_size(result), node)
            case dict() | tuple():
                return to_pl_value(result)
        return result

    def _call_closure(self, func: Closure, args: List[Any], node: Optional[Node]) -> Any:
        _dbg("Closure call", func.name or "anonymous", "argc", len(args), "depth", self.monitor.call_depth)
        self.monitor.enter_call(node)
        try:
            call_env = Environment(parent=func.env)
            for i, name in enumerate(func.params):
                call_env.define(name, args[i] if i < len(args) else None)
            # Frames stay on the stack when an error unwinds, for the stacktrace.
            self.call_stack.append({'name': func.name or 'anonymous', 'args': list(args),
                                    'line': node.line if node is not None else None})
            if func.is_expression_body:
                result = self.evaluate(func.body, call_env)
            else:
                signal = self._exec_statements(func.body.body, call_env)
                result = None
                if signal is not None:
                    if not is_return(signal):
                        self._raise_stray(signal)
                    result = signal.value
            self.call_stack.pop()
            return result
        finally:
            self.monitor.exit_call()

    @staticmethod
    def _describe_callee(callee: Node) -> str:
        match callee:
            case Identifier():
                return callee.name
            case MemberExpression(computed=False):
                return Printer().pformat(callee)
        return "Expression"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _position(node: Optional[Node]):
        if node is None:
            return None, None
        return node.line, node.column

    def _error(self, message: str, node: Optional[Node]) -> PLRuntimeError:
        line, column = self._position(node)
        return PLRuntimeError(message, line, column)


def power(a: float, b: float) -> float:
    """`a ^ b`: overflow gives Infinity and undefined results give NaN."""
    if a == 0 and b < 0:
        return math.inf
    try:
        return math.pow(a, b)
    except OverflowError:
        if a < 0 and float(b).is_integer() and int(b) % 2 == 1:
            return -math.inf
        return math.inf
    except ValueError:
        return math.nan
