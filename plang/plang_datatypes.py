"""
Defines the core data types for the PL language runtime.

This module provides the error taxonomy, lexical environments and all
first-class run-time values (objects, closures, builtins) that the PL
interpreter works with.
"""

from collections import UserDict
from typing import List, Dict, Any, Optional, Callable, TYPE_CHECKING

if TYPE_CHECKING:
    from plang.plang_ast import Block, Node


# =================================================================
# Error Taxonomy
# =================================================================

class PLError(Exception):
    """Base class for every classified failure raised by the PL core.

    Carries a human-readable message, an optional source position and the
    output captured before the failure (partial output is never rolled back).
    """
    kind = "Error"
    http_status = 400

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.line = line
        self.column = column
        self.output: str = ""

    def at(self, line: Optional[int], column: Optional[int]) -> 'PLError':
        """Attach a position if the error does not carry one yet."""
        if self.line is None and line is not None:
            self.line = line
            self.column = column
        return self

    def format(self) -> str:
        loc = ""
        if self.line is not None:
            loc = f" (line {self.line}, column {self.column})"
        return f"{self.kind}: {self.message}{loc}"

    def __str__(self) -> str:
        if self.line is not None:
            return f"{self.message} at line {self.line}, column {self.column}"
        return self.message


class PLSyntaxError(PLError):
    """Malformed token or grammar."""
    kind = "SyntaxError"


class PLRuntimeError(PLError):
    kind = "RuntimeError"


class SecurityError(PLError):
    """Use of a denylisted capability."""
    kind = "SecurityError"


class PLTimeoutError(PLError, TimeoutError):
    kind = "TimeoutError"
    http_status = 408


class QuotaExceededError(PLError):
    kind = "QuotaExceededError"
    http_status = 413


# =================================================================
# Environments
# =================================================================

class Environment:
    """A lexical scope: name bindings plus a lookup link to the enclosing scope.

    The parent link is only used for lookup; environments never reference
    their children, so the chain is acyclic. Closures keep their defining
    environment alive by holding a reference to it.
    """
    def __init__(self, parent: Optional['Environment'] = None):
        self.bindings: Dict[str, Any] = {}
        self.constants: set = set()
        self.parent = parent

    def define(self, name: str, value: Any, constant: bool = False):
        if name in self.constants:
            raise PLRuntimeError(f"Identifier '{name}' has already been declared")
        self.bindings[name] = value
        if constant:
            self.constants.add(name)

    def find_owner(self, name: str) -> Optional['Environment']:
        """Finds the Environment in the parent chain that binds name."""
        env = self
        while env is not None:
            if name in env.bindings:
                return env
            env = env.parent
        return None

    def get(self, name: str) -> Any:
        owner = self.find_owner(name)
        if owner is None:
            raise PLRuntimeError(f"Undefined variable '{name}'")
        return owner.bindings[name]

    def assign(self, name: str, value: Any):
        owner = self.find_owner(name)
        if owner is None:
            raise PLRuntimeError(f"Undefined variable '{name}'")
        if name in owner.constants:
            raise PLRuntimeError(f"Assignment to constant variable '{name}'")
        owner.bindings[name] = value

    def __contains__(self, name: str) -> bool:
        return self.find_owner(name) is not None

    def __repr__(self) -> str:
        keys = ', '.join(self.bindings.keys())
        parent_id = f", parent=#{id(self.parent)}" if self.parent else ""
        return f"<Environment bindings=[{keys}]{parent_id}>"


# =================================================================
# Run-time Values
# =================================================================

class PLObject(UserDict):
    """A PL object value: an insertion-ordered mapping of string keys.

    Hashable and compared by identity, like objects in JavaScript.
    Builtin namespaces (Math, String, Array) are frozen.
    """
    def __init__(self, *args, frozen: bool = False, **kwargs):
        self.frozen = False
        super().__init__(*args, **kwargs)
        self.frozen = frozen

    def __setitem__(self, key, value):
        if self.frozen:
            raise PLRuntimeError(f"Cannot assign to read-only property '{key}'")
        self.data[key] = value

    def __delitem__(self, key):
        if self.frozen:
            raise PLRuntimeError(f"Cannot delete read-only property '{key}'")
        del self.data[key]

    def __hash__(self):
        return id(self)

    def __eq__(self, other):
        return self is other

    def __repr__(self):
        from plang.plang_printer import Printer
        return Printer().stringify(self)


class PLCallable:
    """Abstract base class for all values callable within PL."""
    name: Optional[str] = None


class Closure(PLCallable):
    """A function defined in PL (declaration, function expression or arrow).

    This bundles the parameter names, the body and the Environment in which
    the function was defined. The environment is captured by reference, so
    later mutations of captured variables are visible to the closure.
    """
    def __init__(self, params: List[str], body: Any, env: Environment, name: Optional[str] = None):
        self.params = list(params)
        self.body = body
        self.env = env
        self.name = name

    @property
    def is_expression_body(self) -> bool:
        from plang.plang_ast import Block
        return not isinstance(self.body, Block)

    def __repr__(self) -> str:
        return f"<function {self.name or 'anonymous'}({', '.join(self.params)})>"


class Builtin(PLCallable):
    """Wraps a host (Python) callable exposed through the builtin table."""
    def __init__(self, name: str, func: Callable[..., Any]):
        self.name = name
        self.func = func

    def __call__(self, *args):
        return self.func(*args)

    def __repr__(self) -> str:
        return f"<builtin {self.name}>"


class BoundMethod(PLCallable):
    """A builtin helper bound to a receiver, e.g. the value of `"ab".toUpperCase`."""
    def __init__(self, receiver: Any, builtin: Builtin):
        self.receiver = receiver
        self.builtin = builtin
        self.name = builtin.name

    def __call__(self, *args):
        return self.builtin.func(self.receiver, *args)

    def __repr__(self) -> str:
        return f"<bound {self.builtin.name}>"


class Completion:
    """A control-flow signal produced by `return`, `break` or `continue`.

    Statement executors return a Completion (or None for normal completion)
    and each enclosing construct decides whether to consume or propagate it.
    """
    __slots__ = ("kind", "value", "node")

    def __init__(self, kind: str, value: Any = None, node: Optional['Node'] = None):
        self.kind = kind
        self.value = value
        self.node = node

    def __repr__(self) -> str:
        return f"Completion({self.kind!r}, {self.value!r})"


def is_return(x) -> bool:
    return isinstance(x, Completion) and x.kind == "return"


# =================================================================
# Host <-> PL value conversion
# =================================================================

def to_pl_value(value: Any) -> Any:
    """Convert a host Python value into a PL run-time value."""
    match value:
        case None | bool() | str() | float():
            return value
        case int():
            return float(value)
        case PLObject() | PLCallable():
            return value
        case dict():
            return PLObject({str(k): to_pl_value(v) for k, v in value.items()})
        case list() | tuple():
            return [to_pl_value(v) for v in value]
    if callable(value):
        return Builtin(getattr(value, "__name__", "host"), value)
    raise TypeError(f"Cannot convert {type(value).__name__} to a PL value")


def to_python(value: Any) -> Any:
    """Convert a PL run-time value into plain Python data (for hosts and serialization)."""
    try:
        return _to_python(value)
    except RecursionError:
        raise PLRuntimeError("Value is nested too deeply to convert") from None


def _to_python(value: Any) -> Any:
    match value:
        case PLObject():
            return {k: _to_python(v) for k, v in value.items()}
        case list():
            return [_to_python(v) for v in value]
        case float() if value.is_integer():
            return int(value)
    return value


def type_name(value: Any) -> str:
    """The PL type name of a run-time value, as reported by `type()`."""
    match value:
        case None:
            return "null"
        case bool():
            return "boolean"
        case int() | float():
            return "number"
        case str():
            return "string"
        case list():
            return "array"
        case PLObject():
            return "object"
        case PLCallable():
            return "function"
    return "unknown"
