"""
A pretty-printer for PL values and programs.

`stringify` gives the display form used by print() and string
concatenation. `pformat` renders AST nodes back into valid PL source
(and run-time values into literal-like text for the REPL).
"""
import math
import re
from typing import Any, List, Optional, Tuple

from plang.plang_ast import (
    Node, Program, Block, ExpressionStatement, IfStatement, WhileStatement, ForStatement,
    ReturnStatement, BreakStatement, ContinueStatement, VariableDeclaration,
    FunctionDeclaration, SwitchStatement,
    BinaryExpression, LogicalExpression, UnaryExpression, AssignmentExpression,
    ConditionalExpression, CallExpression, MemberExpression, Identifier, Literal,
    ArrayExpression, ObjectExpression, ArrowFunctionExpression, FunctionExpression,
)
from plang.plang_datatypes import PLObject, Closure, Builtin, BoundMethod

_IDENT_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

_BINARY_PRECEDENCE = {
    '==': 5, '!=': 5,
    '<': 6, '>': 6, '<=': 6, '>=': 6,
    '+': 7, '-': 7,
    '*': 8, '/': 8, '%': 8,
    '^': 10,
}

UNARY_LEVEL = 9
POSTFIX_LEVEL = 11
PRIMARY_LEVEL = 12

# (generated line text, indent level, originating node)
Line = Tuple[str, int, Optional[Node]]


def format_number(value: float) -> str:
    """Display form of a PL number."""
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if math.isnan(value):
        return 'NaN'
    if math.isinf(value):
        return 'Infinity' if value > 0 else '-Infinity'
    if value == 0:
        return '0'
    if float(value).is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(float(value))


def quote_string(s: str) -> str:
    escaped = (s.replace('\\', '\\\\').replace('"', '\\"')
               .replace('\n', '\\n').replace('\t', '\\t').replace('\r', '\\r'))
    return f'"{escaped}"'


def precedence(node: Node) -> int:
    match node:
        case AssignmentExpression() | ArrowFunctionExpression():
            return 1
        case ConditionalExpression():
            return 2
        case LogicalExpression(operator='or'):
            return 3
        case LogicalExpression():
            return 4
        case BinaryExpression():
            return _BINARY_PRECEDENCE[node.operator]
        case UnaryExpression():
            return UNARY_LEVEL
        case Literal(value=float() | int() as v) if not isinstance(v, bool) and v < 0:
            return UNARY_LEVEL
        case CallExpression() | MemberExpression():
            return POSTFIX_LEVEL
    return PRIMARY_LEVEL


def _leftmost(node: Node) -> Node:
    """The primary expression an expression's source text starts with."""
    while True:
        match node:
            case BinaryExpression() | LogicalExpression() | AssignmentExpression():
                node = node.left
            case ConditionalExpression():
                node = node.consequent
            case CallExpression():
                node = node.callee
            case MemberExpression():
                node = node.object
            case _:
                return node


class Printer:
    """Formats PL values and AST nodes into readable, valid PL source strings."""

    def __init__(self, indent_width=2, minify=False):
        self.indent_width = indent_width
        self._indent_char = " " * indent_width
        self.minify = minify
        self._handlers = self._create_handlers()

    # ------------------------------------------------------------------
    # Run-time values
    # ------------------------------------------------------------------

    def stringify(self, value: Any, _seen=None) -> str:
        """The display form used by print(), toString() and `+` concatenation."""
        match value:
            case None:
                return 'null'
            case bool():
                return 'true' if value else 'false'
            case str():
                return value
            case int() | float():
                return format_number(value)
        seen = _seen or set()
        if id(value) in seen:
            return '[Circular]'
        match value:
            case list():
                inner = seen | {id(value)}
                return '[' + ', '.join(self.stringify(v, inner) for v in value) + ']'
            case PLObject():
                inner = seen | {id(value)}
                return '{' + ', '.join(f"{k}: {self.stringify(v, inner)}" for k, v in value.items()) + '}'
            case Closure():
                return f"<function {value.name or 'anonymous'}>"
            case Builtin() | BoundMethod():
                return f"<builtin {value.name}>"
        return str(value)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, (Block, Program)) or self._is_statement(obj):
            return self._pformat_statement_node
        if isinstance(obj, Node):
            return lambda o, l: self._expr(o)
        return lambda o, l: self.stringify(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: self._pformat_primitive,
            float: self._pformat_primitive,
            bool: self._pformat_primitive,
            type(None): self._pformat_primitive,
            list: self._pformat_list,
            PLObject: self._pformat_object_value,
            Program: self._pformat_program,
        }

    def _pformat_primitive(self, obj, level):
        return self.stringify(obj)

    def _pformat_str(self, obj, level):
        return quote_string(obj)

    def _pformat_list(self, obj, level):
        return '[' + ', '.join(self.pformat(v, level) for v in obj) + ']'

    def _pformat_object_value(self, obj, level):
        parts = [f"{self._key(k)}: {self.pformat(v, level)}" for k, v in obj.items()]
        return '{' + ', '.join(parts) + '}'

    def _pformat_program(self, obj, level):
        return self.render(obj, level)[0]

    def render(self, program: Program, level=0) -> Tuple[str, List[Line]]:
        """Program source plus the (text, indent level, node) entries it was built from."""
        if self.minify:
            lines = self.minified_lines(program)
            return "".join(text for text, _, _ in lines), lines
        lines = self.statement_lines(program.body, level)
        return "\n".join(self._indent_char * lvl + text for text, lvl, _ in lines), lines

    def _pformat_statement_node(self, obj, level):
        if self.minify:
            return self._stmt_min(obj)
        return '\n'.join(self._indent_char * lvl + text for text, lvl, _ in self._stmt_lines(obj, level))

    @staticmethod
    def _is_statement(obj) -> bool:
        return isinstance(obj, (ExpressionStatement, IfStatement, WhileStatement, ForStatement,
                                ReturnStatement, BreakStatement, ContinueStatement,
                                VariableDeclaration, FunctionDeclaration, SwitchStatement))

    # ------------------------------------------------------------------
    # Statements (pretty, line oriented)
    # ------------------------------------------------------------------

    def statement_lines(self, statements, level=0) -> List[Line]:
        lines: List[Line] = []
        for stmt in statements:
            lines.extend(self._stmt_lines(stmt, level))
        return lines

    def _stmt_lines(self, stmt, level) -> List[Line]:
        match stmt:
            case Block():
                return self._block_lines(stmt, level, header='', node=stmt)
            case IfStatement():
                return self._if_lines(stmt, level)
            case WhileStatement():
                return self._body_lines(f"while ({self._expr(stmt.test)})", stmt.body, level, stmt)
            case ForStatement():
                return self._body_lines(self._for_header(stmt), stmt.body, level, stmt)
            case FunctionDeclaration():
                header = f"function {stmt.id.name}({self._params(stmt.params)})"
                return self._block_lines(stmt.body, level, header=header + ' ', node=stmt)
            case SwitchStatement():
                lines = [(f"switch ({self._expr(stmt.discriminant)}) {{", level, stmt)]
                for case in stmt.cases:
                    label = 'default:' if case.test is None else f"case {self._expr(case.test)}:"
                    lines.append((label, level + 1, case))
                    lines.extend(self.statement_lines(case.consequent, level + 2))
                lines.append(('}', level, None))
                return lines
        return [(self._simple(stmt), level, stmt)]

    def _block_lines(self, block: Block, level, header: str, node) -> List[Line]:
        if not block.body:
            return [(header + '{}', level, node)]
        lines = [(header + '{', level, node)]
        lines.extend(self.statement_lines(block.body, level + 1))
        lines.append(('}', level, None))
        return lines

    def _body_lines(self, header: str, body, level, node) -> List[Line]:
        if isinstance(body, Block):
            return self._block_lines(body, level, header=header + ' ', node=node)
        return [(header, level, node)] + self._stmt_lines(body, level + 1)

    def _if_lines(self, stmt: IfStatement, level) -> List[Line]:
        consequent = stmt.consequent
        if stmt.alternate is not None and isinstance(consequent, IfStatement) and consequent.alternate is None:
            # Keep the else attached to this if.
            consequent = Block(body=[consequent], line=consequent.line, column=consequent.column)
        lines = self._body_lines(f"if ({self._expr(stmt.test)})", consequent, level, stmt)
        if stmt.alternate is None:
            return lines
        node = stmt.alternate
        if isinstance(consequent, Block):
            # `} else` shares the closing line of the block
            text, _, node = lines.pop()
            prefix = text + ' else'
        else:
            prefix = 'else'
        node = node or stmt.alternate
        if isinstance(stmt.alternate, IfStatement):
            rest = self._if_lines(stmt.alternate, level)
            return lines + [(f"{prefix} {rest[0][0]}", level, node)] + rest[1:]
        return lines + self._body_lines(prefix, stmt.alternate, level, node)

    def _for_header(self, stmt: ForStatement) -> str:
        init = ''
        if isinstance(stmt.init, VariableDeclaration):
            init = self._declaration(stmt.init)
        elif stmt.init is not None:
            init = self._expr(stmt.init)
        test = self._expr(stmt.test) if stmt.test is not None else ''
        update = self._expr(stmt.update) if stmt.update is not None else ''
        if self.minify:
            return f"for({init};{test};{update})"
        test = f" {test};" if test else ';'
        update = f" {update})" if update else ')'
        return f"for ({init};{test}{update}"

    def _simple(self, stmt) -> str:
        match stmt:
            case ExpressionStatement():
                text = self._expr(stmt.expression)
                first = _leftmost(stmt.expression)
                if isinstance(first, (ObjectExpression, FunctionExpression)):
                    text = f"({text})"
                return text
            case ReturnStatement(argument=None):
                return 'return'
            case ReturnStatement():
                return f"return {self._expr(stmt.argument)}"
            case BreakStatement():
                return 'break'
            case ContinueStatement():
                return 'continue'
            case VariableDeclaration():
                return self._declaration(stmt)
        raise TypeError(f"Cannot format {type(stmt).__name__}")

    def _declaration(self, decl: VariableDeclaration) -> str:
        eq = '=' if self.minify else ' = '
        comma = ',' if self.minify else ', '
        parts = []
        for d in decl.declarations:
            parts.append(d.id.name if d.init is None else f"{d.id.name}{eq}{self._expr(d.init)}")
        return f"{decl.kind} {comma.join(parts)}"

    # ------------------------------------------------------------------
    # Statements (minified, single line)
    # ------------------------------------------------------------------

    def minified_lines(self, program: Program) -> List[Line]:
        """One entry per top-level statement; concatenated they form the program."""
        return [(self._stmt_min(stmt), 0, stmt) for stmt in program.body]

    def _stmt_min(self, stmt) -> str:
        match stmt:
            case Block():
                return self._block_min(stmt)
            case IfStatement():
                consequent = stmt.consequent
                if stmt.alternate is not None and isinstance(consequent, IfStatement) and consequent.alternate is None:
                    consequent = Block(body=[consequent])
                text = f"if({self._expr(stmt.test)}){self._stmt_min(consequent)}"
                if stmt.alternate is not None:
                    text += f"else {self._stmt_min(stmt.alternate)}"
                return text
            case WhileStatement():
                return f"while({self._expr(stmt.test)}){self._stmt_min(stmt.body)}"
            case ForStatement():
                return self._for_header(stmt) + self._stmt_min(stmt.body)
            case FunctionDeclaration():
                return f"function {stmt.id.name}({self._params(stmt.params)}){self._block_min(stmt.body)}"
            case SwitchStatement():
                cases = []
                for case in stmt.cases:
                    label = 'default:' if case.test is None else f"case {self._expr(case.test)}:"
                    cases.append(label + ''.join(self._stmt_min(s) for s in case.consequent))
                return f"switch({self._expr(stmt.discriminant)}){{{''.join(cases)}}}"
        return self._simple(stmt) + ';'

    def _block_min(self, block: Block) -> str:
        return '{' + ''.join(self._stmt_min(s) for s in block.body) + '}'

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def _expr(self, node) -> str:
        sp = '' if self.minify else ' '
        match node:
            case Literal(value=str() as s):
                return quote_string(s)
            case Literal():
                return self.stringify(node.value)
            case Identifier():
                return node.name
            case BinaryExpression(operator='^'):
                left = self._wrap(node.left, POSTFIX_LEVEL)
                right = self._wrap(node.right, UNARY_LEVEL)
                return f"{left}{sp}^{sp}{right}"
            case BinaryExpression():
                prec = _BINARY_PRECEDENCE[node.operator]
                left = self._wrap(node.left, prec)
                right = self._wrap(node.right, prec + 1)
                return f"{left}{sp}{node.operator}{sp}{right}"
            case LogicalExpression():
                prec = precedence(node)
                left = self._wrap(node.left, prec)
                right = self._wrap(node.right, prec + 1)
                return f"{left} {node.operator} {right}"
            case UnaryExpression(operator='not'):
                return f"not {self._wrap(node.argument, UNARY_LEVEL)}"
            case UnaryExpression():
                arg = self._wrap(node.argument, UNARY_LEVEL)
                if arg.startswith(node.operator):
                    arg = f"({arg})"
                return f"{node.operator}{arg}"
            case AssignmentExpression():
                return f"{self._expr(node.left)}{sp}{node.operator}{sp}{self._expr(node.right)}"
            case ConditionalExpression():
                consequent = self._wrap(node.consequent, 3)
                test = self._wrap(node.test, 3)
                alternate = self._wrap(node.alternate, 2)
                return f"{consequent} if {test} else {alternate}"
            case CallExpression():
                args = (',' if self.minify else ', ').join(self._expr(a) for a in node.arguments)
                return f"{self._wrap(node.callee, POSTFIX_LEVEL)}({args})"
            case MemberExpression(computed=True):
                return f"{self._wrap(node.object, POSTFIX_LEVEL)}[{self._expr(node.property)}]"
            case MemberExpression():
                return f"{self._wrap(node.object, POSTFIX_LEVEL)}.{node.property.name}"
            case ArrayExpression():
                return '[' + (',' if self.minify else ', ').join(self._expr(e) for e in node.elements) + ']'
            case ObjectExpression():
                colon = ':' if self.minify else ': '
                parts = [f"{self._key(p.key)}{colon}{self._expr(p.value)}" for p in node.properties]
                return '{' + (',' if self.minify else ', ').join(parts) + '}'
            case ArrowFunctionExpression():
                param = node.params[0].name
                if isinstance(node.body, Block):
                    body = self._inline_block(node.body)
                elif isinstance(_leftmost(node.body), ObjectExpression):
                    body = f"({self._expr(node.body)})"
                else:
                    body = self._expr(node.body)
                return f"{param}{sp}->{sp}{body}"
            case FunctionExpression():
                name = f" {node.id.name}" if node.id is not None else ''
                return f"function{name}({self._params(node.params)}){sp}{self._inline_block(node.body)}"
        raise TypeError(f"Cannot format {type(node).__name__}")

    def _inline_block(self, block: Block) -> str:
        """A block nested inside an expression, kept on one line."""
        if not block.body:
            return '{}'
        if self.minify:
            return self._block_min(block)
        return '{ ' + ' '.join(self._stmt_min(s) for s in block.body) + ' }'

    def _wrap(self, node, min_level: int) -> str:
        text = self._expr(node)
        if precedence(node) < min_level:
            return f"({text})"
        return text

    def _params(self, params) -> str:
        return (',' if self.minify else ', ').join(p.name for p in params)

    @staticmethod
    def _key(key: str) -> str:
        return key if _IDENT_RE.match(key) else quote_string(key)
