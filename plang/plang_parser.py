"""
The PL parser: a recursive-descent statement parser with a precedence
climbing expression parser. Turns a token list into a Program AST.
"""
import sys
from typing import List, Optional, Tuple

from plang.plang_datatypes import PLSyntaxError
from plang.plang_lexer import Token, TokenType
from plang.plang_ast import (
    Program, Block, ExpressionStatement, IfStatement, WhileStatement, ForStatement,
    ReturnStatement, BreakStatement, ContinueStatement, VariableDeclaration,
    VariableDeclarator, FunctionDeclaration, SwitchStatement, CaseStatement,
    BinaryExpression, LogicalExpression, UnaryExpression, AssignmentExpression,
    ConditionalExpression, CallExpression, MemberExpression, Identifier, Literal,
    ArrayExpression, ObjectExpression, Property, ArrowFunctionExpression,
    FunctionExpression, Node,
)
from plang.plang_printer import format_number

T = TokenType

# Binary operator tiers, lowest to highest; all left-associative.
BINARY_TIERS = [
    (T.EQUAL, T.NOT_EQUAL),
    (T.LESS_THAN, T.GREATER_THAN, T.LESS_EQUAL, T.GREATER_EQUAL),
    (T.PLUS, T.MINUS),
    (T.MULTIPLY, T.DIVIDE, T.MODULO),
]

ASSIGNMENT_OPS = (T.ASSIGN, T.PLUS_ASSIGN, T.MINUS_ASSIGN)

STATEMENT_KEYWORDS = (
    T.IF, T.WHILE, T.FOR, T.RETURN, T.BREAK, T.CONTINUE,
    T.VAR, T.CONST, T.FUNCTION, T.SWITCH,
)

STATEMENT_END = (T.NEWLINE, T.SEMICOLON, T.RBRACE, T.EOF)

# Deepest nesting of blocks and expressions accepted. Operator and call chains
# count one level per link, as each link adds a level to the tree.
MAX_NESTING = 200

# Python frames the parser uses per nesting level, with headroom.
_FRAMES_PER_LEVEL = 20


class Parser:
    """Parses a token list into a Program.

    By default the first error is raised. With recover=True errors are
    collected in `self.errors` and parsing resumes at the next statement
    boundary, producing a best-effort partial tree.
    """

    def __init__(self, tokens: List[Token], recover: bool = False):
        if not tokens or tokens[-1].type is not T.EOF:
            raise ValueError("token list must end with an EOF token")
        self.tokens = tokens
        self.position = 0
        self.recover = recover
        self.errors: List[PLSyntaxError] = []
        self.depth = 0

    def parse(self) -> Program:
        needed = MAX_NESTING * _FRAMES_PER_LEVEL + 1000
        if sys.getrecursionlimit() < needed:
            sys.setrecursionlimit(needed)
        try:
            body = self._statement_list(until=T.EOF)
        except RecursionError:
            error = self._too_deep()
            if not self.recover:
                raise error from None
            self.errors.append(error)
            body = []
        return Program(body=body, line=1, column=1)

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _statement_list(self, until: TokenType) -> list:
        depth = self.depth
        self._descend()
        statements = []
        while True:
            self._skip_separators()
            if self._check(until) or self._check(T.EOF):
                break
            if until is not T.RBRACE and self._check(T.RBRACE):
                self._fail_or_record(self._error_unexpected())
                self._advance()
                continue
            stmt = self._guarded_statement()
            if stmt is not None:
                statements.append(stmt)
        self.depth = depth
        return statements

    def _guarded_statement(self):
        if not self.recover:
            return self._statement()
        start, depth = self.position, self.depth
        try:
            return self._statement()
        except PLSyntaxError as e:
            self.errors.append(e)
            self.depth = depth
            self._synchronize(start)
            return None

    def _statement(self):
        token = self._peek()
        match token.type:
            case T.IF:
                return self._if_statement()
            case T.WHILE:
                return self._while_statement()
            case T.FOR:
                return self._for_statement()
            case T.RETURN:
                return self._terminated(self._return_statement())
            case T.BREAK:
                self._advance()
                return self._terminated(BreakStatement(line=token.line, column=token.column))
            case T.CONTINUE:
                self._advance()
                return self._terminated(ContinueStatement(line=token.line, column=token.column))
            case T.VAR | T.CONST:
                return self._terminated(self._variable_declaration())
            case T.FUNCTION if self._peek(1).type is T.IDENTIFIER:
                return self._function_declaration()
            case T.SWITCH:
                return self._switch_statement()
            case T.LBRACE:
                return self._block()
        expr = self._expression()
        return self._terminated(ExpressionStatement(expression=expr, line=expr.line, column=expr.column))

    def _terminated(self, stmt):
        """Simple statements must end at a newline, ';', '}' or end of input."""
        if self._check(T.SEMICOLON):
            self._advance()
        elif not self._check_any(STATEMENT_END):
            raise self._error_unexpected()
        return stmt

    def _if_statement(self) -> IfStatement:
        token = self._consume(T.IF, 'Expected "if"')
        self._consume(T.LPAREN, 'Expected "(" after "if"')
        test = self._grouped_expression()
        self._consume(T.RPAREN, 'Expected ")" after condition')
        consequent = self._body_statement()
        alternate = None
        mark = self.position
        self._skip_newlines()
        if self._match(T.ELSE):
            alternate = self._body_statement()
        else:
            self.position = mark
        return IfStatement(test=test, consequent=consequent, alternate=alternate,
                           line=token.line, column=token.column)

    def _while_statement(self) -> WhileStatement:
        token = self._consume(T.WHILE, 'Expected "while"')
        self._consume(T.LPAREN, 'Expected "(" after "while"')
        test = self._grouped_expression()
        self._consume(T.RPAREN, 'Expected ")" after condition')
        body = self._body_statement()
        return WhileStatement(test=test, body=body, line=token.line, column=token.column)

    def _for_statement(self) -> ForStatement:
        token = self._consume(T.FOR, 'Expected "for"')
        self._consume(T.LPAREN, 'Expected "(" after "for"')
        self._skip_newlines()

        init = None
        if not self._check(T.SEMICOLON):
            if self._check_any((T.VAR, T.CONST)):
                init = self._variable_declaration()
            else:
                init = self._expression()
        self._skip_newlines()
        self._consume(T.SEMICOLON, 'Expected ";" after for loop initializer')
        self._skip_newlines()

        test = None
        if not self._check(T.SEMICOLON):
            test = self._expression()
        self._skip_newlines()
        self._consume(T.SEMICOLON, 'Expected ";" after for loop condition')
        self._skip_newlines()

        update = None
        if not self._check(T.RPAREN):
            update = self._expression()
        self._skip_newlines()
        self._consume(T.RPAREN, 'Expected ")" after for clauses')

        body = self._body_statement()
        return ForStatement(init=init, test=test, update=update, body=body,
                            line=token.line, column=token.column)

    def _body_statement(self):
        """The statement governed by if/else/while/for; may start on the next line."""
        self._skip_newlines()
        if self._check_any((T.EOF, T.RBRACE)):
            raise self._error_unexpected()
        depth = self.depth
        self._descend()
        stmt = self._statement()
        self.depth = depth
        return stmt

    def _return_statement(self) -> ReturnStatement:
        token = self._consume(T.RETURN, 'Expected "return"')
        argument = None
        if not self._check_any(STATEMENT_END):
            argument = self._expression()
        return ReturnStatement(argument=argument, line=token.line, column=token.column)

    def _variable_declaration(self) -> VariableDeclaration:
        token = self._advance()
        kind = 'var' if token.type is T.VAR else 'const'
        declarations = []
        while True:
            ident = self._identifier('Expected variable name')
            init = None
            if self._match(T.ASSIGN):
                self._skip_newlines()
                init = self._expression()
            declarations.append(VariableDeclarator(id=ident, init=init, line=ident.line, column=ident.column))
            if not self._match(T.COMMA):
                break
            self._skip_newlines()
        return VariableDeclaration(kind=kind, declarations=declarations, line=token.line, column=token.column)

    def _function_declaration(self) -> FunctionDeclaration:
        token = self._consume(T.FUNCTION, 'Expected "function"')
        ident = self._identifier('Expected function name')
        params = self._parameter_list()
        body = self._block()
        return FunctionDeclaration(id=ident, params=params, body=body, line=token.line, column=token.column)

    def _parameter_list(self) -> List[Identifier]:
        self._consume(T.LPAREN, 'Expected "(" before parameters')
        params = []
        self._skip_newlines()
        if not self._check(T.RPAREN):
            while True:
                self._skip_newlines()
                params.append(self._identifier('Expected parameter name'))
                self._skip_newlines()
                if not self._match(T.COMMA):
                    break
        self._consume(T.RPAREN, 'Expected ")" after parameters')
        return params

    def _switch_statement(self) -> SwitchStatement:
        token = self._consume(T.SWITCH, 'Expected "switch"')
        self._consume(T.LPAREN, 'Expected "(" after "switch"')
        discriminant = self._grouped_expression()
        self._consume(T.RPAREN, 'Expected ")" after switch value')
        self._skip_newlines()
        self._consume(T.LBRACE, 'Expected "{" after switch value')

        cases = []
        seen_default = False
        while True:
            self._skip_separators()
            if self._check_any((T.RBRACE, T.EOF)):
                break
            case_token = self._peek()
            if self._match(T.CASE):
                test = self._expression()
            elif self._match(T.DEFAULT):
                if seen_default:
                    raise PLSyntaxError("More than one default clause in switch statement",
                                        case_token.line, case_token.column)
                seen_default = True
                test = None
            else:
                raise self._error_unexpected('Expected "case" or "default"')
            self._consume(T.COLON, 'Expected ":" after case label')
            consequent = []
            while True:
                self._skip_separators()
                if self._check_any((T.CASE, T.DEFAULT, T.RBRACE, T.EOF)):
                    break
                consequent.append(self._statement())
            cases.append(CaseStatement(test=test, consequent=consequent,
                                       line=case_token.line, column=case_token.column))

        self._consume(T.RBRACE, 'Expected "}" after switch cases')
        return SwitchStatement(discriminant=discriminant, cases=cases, line=token.line, column=token.column)

    def _block(self) -> Block:
        self._skip_newlines()
        token = self._consume(T.LBRACE, 'Expected "{"')
        body = self._statement_list(until=T.RBRACE)
        self._consume(T.RBRACE, 'Expected "}" after block')
        return Block(body=body, line=token.line, column=token.column)

    # ------------------------------------------------------------------
    # Expressions (lowest to highest precedence)
    # ------------------------------------------------------------------

    def _expression(self):
        depth = self.depth
        self._descend()
        expr = self._assignment()
        self.depth = depth
        return expr

    def _grouped_expression(self):
        """An expression inside () where newlines are insignificant."""
        self._skip_newlines()
        expr = self._expression()
        self._skip_newlines()
        return expr

    def _assignment(self):
        expr = self._conditional()
        if self._check_any(ASSIGNMENT_OPS):
            op_token = self._advance()
            if not isinstance(expr, (Identifier, MemberExpression)):
                raise PLSyntaxError("Invalid assignment target", op_token.line, op_token.column)
            self._skip_newlines()
            self._descend()
            value = self._assignment()
            self.depth -= 1
            return AssignmentExpression(operator=op_token.value, left=expr, right=value,
                                        line=expr.line, column=expr.column)
        return expr

    def _conditional(self):
        expr = self._logical_or()
        if self._match(T.IF):
            test = self._logical_or()
            self._consume(T.ELSE, 'Expected "else" in conditional expression')
            self._skip_newlines()
            self._descend()
            alternate = self._conditional()
            self.depth -= 1
            return ConditionalExpression(test=test, consequent=expr, alternate=alternate,
                                         line=expr.line, column=expr.column)
        return expr

    def _logical_or(self):
        depth = self.depth
        expr = self._logical_and()
        while self._match(T.OR):
            self._descend()
            self._skip_newlines()
            right = self._logical_and()
            expr = LogicalExpression(operator='or', left=expr, right=right, line=expr.line, column=expr.column)
        self.depth = depth
        return expr

    def _logical_and(self):
        depth = self.depth
        expr = self._binary(0)
        while self._match(T.AND):
            self._descend()
            self._skip_newlines()
            right = self._binary(0)
            expr = LogicalExpression(operator='and', left=expr, right=right, line=expr.line, column=expr.column)
        self.depth = depth
        return expr

    def _binary(self, tier: int):
        if tier >= len(BINARY_TIERS):
            return self._unary()
        depth = self.depth
        expr = self._binary(tier + 1)
        while self._check_any(BINARY_TIERS[tier]):
            op = self._advance().value
            self._descend()
            self._skip_newlines()
            right = self._binary(tier + 1)
            expr = BinaryExpression(operator=op, left=expr, right=right, line=expr.line, column=expr.column)
        self.depth = depth
        return expr

    def _unary(self):
        if self._check_any((T.NOT, T.MINUS, T.PLUS)):
            token = self._advance()
            operator = 'not' if token.type is T.NOT else token.value
            self._descend()
            argument = self._unary()
            self.depth -= 1
            return UnaryExpression(operator=operator, argument=argument, line=token.line, column=token.column)
        return self._power()

    def _power(self):
        expr = self._postfix()
        if self._match(T.POWER):
            self._skip_newlines()
            # Right operand at unary level: right-associative, and `2 ^ -1` is allowed.
            self._descend()
            right = self._unary()
            self.depth -= 1
            return BinaryExpression(operator='^', left=expr, right=right, line=expr.line, column=expr.column)
        return expr

    def _postfix(self):
        depth = self.depth
        expr = self._primary()
        while True:
            if self._check_any((T.LPAREN, T.LBRACKET, T.DOT)):
                self._descend()
            if self._match(T.LPAREN):
                args = self._comma_list(T.RPAREN, self._expression)
                self._consume(T.RPAREN, 'Expected ")" after arguments')
                expr = CallExpression(callee=expr, arguments=args, line=expr.line, column=expr.column)
            elif self._match(T.LBRACKET):
                prop = self._grouped_expression()
                self._consume(T.RBRACKET, 'Expected "]" after subscript')
                expr = MemberExpression(object=expr, property=prop, computed=True, line=expr.line, column=expr.column)
            elif self._match(T.DOT):
                token = self._peek()
                if token.type not in (T.IDENTIFIER, T.BOOLEAN, T.NULL) and not token.is_keyword:
                    raise self._error_unexpected('Expected property name after "."')
                self._advance()
                prop = Identifier(name=self._keyword_text(token), line=token.line, column=token.column)
                expr = MemberExpression(object=expr, property=prop, computed=False, line=expr.line, column=expr.column)
            else:
                self.depth = depth
                return expr

    def _primary(self):
        token = self._peek()
        match token.type:
            case T.NUMBER | T.STRING | T.BOOLEAN | T.NULL:
                self._advance()
                return Literal(value=token.value, line=token.line, column=token.column)
            case T.IDENTIFIER if self._peek(1).type is T.ARROW:
                return self._arrow_function()
            case T.IDENTIFIER:
                self._advance()
                return Identifier(name=token.value, line=token.line, column=token.column)
            case T.FUNCTION:
                return self._function_expression()
            case T.LPAREN:
                self._advance()
                expr = self._grouped_expression()
                self._consume(T.RPAREN, 'Expected ")" after expression')
                return expr
            case T.LBRACKET:
                self._advance()
                elements = self._comma_list(T.RBRACKET, self._expression)
                self._consume(T.RBRACKET, 'Expected "]" after array elements')
                return ArrayExpression(elements=elements, line=token.line, column=token.column)
            case T.LBRACE:
                self._advance()
                properties = self._comma_list(T.RBRACE, self._property)
                self._consume(T.RBRACE, 'Expected "}" after object properties')
                return ObjectExpression(properties=properties, line=token.line, column=token.column)
        raise self._error_unexpected()

    def _arrow_function(self) -> ArrowFunctionExpression:
        param_token = self._advance()
        param = Identifier(name=param_token.value, line=param_token.line, column=param_token.column)
        self._consume(T.ARROW, 'Expected "->"')
        self._skip_newlines()
        if self._check(T.LBRACE):
            body = self._block()
        else:
            self._descend()
            body = self._assignment()
            self.depth -= 1
        return ArrowFunctionExpression(params=[param], body=body, line=param_token.line, column=param_token.column)

    def _function_expression(self) -> FunctionExpression:
        token = self._consume(T.FUNCTION, 'Expected "function"')
        ident = None
        if self._check(T.IDENTIFIER):
            ident = self._identifier('Expected function name')
        params = self._parameter_list()
        body = self._block()
        return FunctionExpression(id=ident, params=params, body=body, line=token.line, column=token.column)

    def _property(self) -> Property:
        token = self._peek()
        match token.type:
            case T.IDENTIFIER | T.STRING:
                key = token.value
            case T.NUMBER:
                key = format_number(token.value)
            case _ if token.is_keyword or token.type in (T.BOOLEAN, T.NULL):
                key = self._keyword_text(token)
            case _:
                raise self._error_unexpected('Expected property key')
        self._advance()
        self._skip_newlines()
        self._consume(T.COLON, 'Expected ":" after property key')
        self._skip_newlines()
        value = self._expression()
        return Property(key=key, value=value, line=token.line, column=token.column)

    def _comma_list(self, closer: TokenType, parse_item) -> list:
        """Comma-separated items up to (not including) closer; no trailing comma."""
        items = []
        self._skip_newlines()
        if self._check(closer):
            return items
        while True:
            self._skip_newlines()
            items.append(parse_item())
            self._skip_newlines()
            if not self._match(T.COMMA):
                break
            self._skip_newlines()
            if self._check(closer):
                closer_token = self._peek()
                raise PLSyntaxError(f"Unexpected trailing comma before {closer_token.describe()}",
                                    closer_token.line, closer_token.column)
        return items

    # ------------------------------------------------------------------
    # Token helpers
    # ------------------------------------------------------------------

    def _identifier(self, message: str) -> Identifier:
        token = self._consume(T.IDENTIFIER, message)
        return Identifier(name=token.value, line=token.line, column=token.column)

    @staticmethod
    def _keyword_text(token: Token) -> str:
        if token.type is T.BOOLEAN:
            return 'true' if token.value else 'false'
        if token.type is T.NULL:
            return 'null'
        return str(token.value)

    def _peek(self, offset: int = 0) -> Token:
        index = min(self.position + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def _advance(self) -> Token:
        token = self.tokens[self.position]
        if token.type is not T.EOF:
            self.position += 1
        return token

    def _check(self, token_type: TokenType) -> bool:
        return self._peek().type is token_type

    def _check_any(self, token_types) -> bool:
        return self._peek().type in token_types

    def _match(self, token_type: TokenType) -> bool:
        if self._check(token_type):
            self._advance()
            return True
        return False

    def _consume(self, token_type: TokenType, message: str) -> Token:
        if self._check(token_type):
            return self._advance()
        raise self._error_unexpected(message)

    def _skip_newlines(self):
        while self._check(T.NEWLINE):
            self._advance()

    def _skip_separators(self):
        while self._check_any((T.NEWLINE, T.SEMICOLON)):
            self._advance()

    def _error_unexpected(self, message: Optional[str] = None) -> PLSyntaxError:
        token = self._peek()
        text = f"Unexpected token {token.describe()}"
        if message:
            text = f"{message}, found {token.describe()}"
        return PLSyntaxError(text, token.line, token.column)

    def _descend(self):
        self.depth += 1
        if self.depth > MAX_NESTING:
            raise self._too_deep()

    def _too_deep(self) -> PLSyntaxError:
        token = self._peek()
        return PLSyntaxError("Expression nested too deeply", token.line, token.column)

    def _fail_or_record(self, error: PLSyntaxError):
        if not self.recover:
            raise error
        self.errors.append(error)

    def _synchronize(self, start: int):
        """Skip to the next statement boundary after an error (recovery mode)."""
        if self.position == start:
            self._advance()
        while not self._check(T.EOF):
            if self._check_any((T.NEWLINE, T.SEMICOLON)):
                self._advance()
                return
            if self._check(T.RBRACE) or self._check_any(STATEMENT_KEYWORDS):
                return
            self._advance()


def parse(tokens: List[Token]) -> Program:
    """Parse a token list into a Program, raising PLSyntaxError on the first error."""
    return Parser(tokens).parse()


def parse_with_recovery(tokens: List[Token]) -> Tuple[Program, List[PLSyntaxError]]:
    """Parse collecting every syntax error; returns a best-effort partial Program."""
    parser = Parser(tokens, recover=True)
    program = parser.parse()
    return program, parser.errors
