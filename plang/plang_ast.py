"""
AST node definitions for PL programs.

Every node records the 1-based line/column where it starts. Positions are
excluded from equality so that two parses of equivalent source compare equal
structurally.
"""
from dataclasses import dataclass, field, fields
from typing import Any, List, Optional, Union


@dataclass
class Node:
    line: int = field(default=1, kw_only=True, compare=False)
    column: int = field(default=1, kw_only=True, compare=False)

    @property
    def type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        """Plain-data view of the node (for JSON/YAML export)."""
        out: dict = {"type": self.type}
        for f in fields(self):
            out[f.name] = _plain(getattr(self, f.name))
        return out


def _plain(value: Any) -> Any:
    if isinstance(value, Node):
        return value.to_dict()
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


# =================================================================
# Statements
# =================================================================

@dataclass
class Program(Node):
    body: List['Statement'] = field(default_factory=list)


@dataclass
class Block(Node):
    body: List['Statement'] = field(default_factory=list)


@dataclass
class ExpressionStatement(Node):
    expression: 'Expression'


@dataclass
class IfStatement(Node):
    test: 'Expression'
    consequent: 'Statement'
    alternate: Optional['Statement'] = None


@dataclass
class WhileStatement(Node):
    test: 'Expression'
    body: 'Statement'


@dataclass
class ForStatement(Node):
    init: Optional[Union['VariableDeclaration', 'Expression']]
    test: Optional['Expression']
    update: Optional['Expression']
    body: 'Statement'


@dataclass
class ReturnStatement(Node):
    argument: Optional['Expression'] = None


@dataclass
class BreakStatement(Node):
    pass


@dataclass
class ContinueStatement(Node):
    pass


@dataclass
class VariableDeclarator(Node):
    id: 'Identifier'
    init: Optional['Expression'] = None


@dataclass
class VariableDeclaration(Node):
    kind: str  # 'var' | 'const'
    declarations: List[VariableDeclarator] = field(default_factory=list)


@dataclass
class FunctionDeclaration(Node):
    id: 'Identifier'
    params: List['Identifier']
    body: Block


@dataclass
class CaseStatement(Node):
    test: Optional['Expression']  # None for `default`
    consequent: List['Statement'] = field(default_factory=list)


@dataclass
class SwitchStatement(Node):
    discriminant: 'Expression'
    cases: List[CaseStatement] = field(default_factory=list)


# =================================================================
# Expressions
# =================================================================

@dataclass
class BinaryExpression(Node):
    operator: str
    left: 'Expression'
    right: 'Expression'


@dataclass
class LogicalExpression(Node):
    operator: str  # 'and' | 'or'
    left: 'Expression'
    right: 'Expression'


@dataclass
class UnaryExpression(Node):
    operator: str  # 'not' | '-' | '+'
    argument: 'Expression'


@dataclass
class AssignmentExpression(Node):
    operator: str  # '=' | '+=' | '-='
    left: 'Expression'
    right: 'Expression'


@dataclass
class ConditionalExpression(Node):
    test: 'Expression'
    consequent: 'Expression'
    alternate: 'Expression'


@dataclass
class CallExpression(Node):
    callee: 'Expression'
    arguments: List['Expression'] = field(default_factory=list)


@dataclass
class MemberExpression(Node):
    object: 'Expression'
    property: 'Expression'
    computed: bool = False


@dataclass
class Identifier(Node):
    name: str


@dataclass
class Literal(Node):
    value: Any  # float | str | bool | None


@dataclass
class ArrayExpression(Node):
    elements: List['Expression'] = field(default_factory=list)


@dataclass
class Property(Node):
    key: str
    value: 'Expression'


@dataclass
class ObjectExpression(Node):
    properties: List[Property] = field(default_factory=list)


@dataclass
class ArrowFunctionExpression(Node):
    params: List[Identifier]
    body: Union[Block, 'Expression']


@dataclass
class FunctionExpression(Node):
    id: Optional[Identifier]
    params: List[Identifier]
    body: Block


Statement = Union[
    Block, ExpressionStatement, IfStatement, WhileStatement, ForStatement,
    ReturnStatement, BreakStatement, ContinueStatement, VariableDeclaration,
    FunctionDeclaration, SwitchStatement,
]

Expression = Union[
    BinaryExpression, LogicalExpression, UnaryExpression, AssignmentExpression,
    ConditionalExpression, CallExpression, MemberExpression, Identifier, Literal,
    ArrayExpression, ObjectExpression, ArrowFunctionExpression, FunctionExpression,
]


def walk(node: Any):
    """Yields node and all of its descendants, depth first."""
    if isinstance(node, list):
        for item in node:
            yield from walk(item)
        return
    if not isinstance(node, Node):
        return
    yield node
    for f in fields(node):
        if f.name in ('line', 'column'):
            continue
        yield from walk(getattr(node, f.name))
