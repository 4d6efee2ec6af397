from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from lexer import MiniParseError, Token, decode_string


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


@dataclass
class Node:
    location: SourceLocation


class Statement(Node):
    pass


class Expression(Node):
    pass


@dataclass
class Program(Node):
    statements: List[Statement]


@dataclass
class Block(Statement):
    statements: List[Statement]


@dataclass
class Assignment(Statement):
    target: Expression
    expression: Expression


@dataclass
class IfStatement(Statement):
    condition: Expression
    then_block: Block
    # a nested IfStatement for "else if", a Block for "else"
    else_branch: Optional[Union["IfStatement", Block]]


@dataclass
class EmptyStatement(Statement):
    pass


@dataclass
class ExpressionStatement(Statement):
    expression: Expression


@dataclass
class WhileStatement(Statement):
    condition: Expression
    block: Block


@dataclass
class ReturnStatement(Statement):
    expression: Optional[Expression]


@dataclass
class NumberLiteral(Expression):
    value: int


@dataclass
class StringLiteral(Expression):
    value: str


@dataclass
class Identifier(Expression):
    name: str


@dataclass
class FuncLiteral(Expression):
    params: List[Identifier]
    body: Block


@dataclass
class KeyValue(Expression):
    key: Expression
    value: Expression


@dataclass
class ArrayLiteral(Expression):
    elements: List[Expression]


@dataclass
class UnaryExpression(Expression):
    op: Token
    operand: Expression


@dataclass
class BinaryExpression(Expression):
    left: Expression
    op: Token
    right: Expression


@dataclass
class IndexExpression(Expression):
    base: Expression
    index: Expression


@dataclass
class SelectorExpression(Expression):
    base: Expression
    selector: Identifier


@dataclass
class ParenExpression(Expression):
    expression: Expression


@dataclass
class CallExpression(Expression):
    callee: Expression
    args: List[Expression]


LOWEST_PRECEDENCE = 0

PRECEDENCE: Dict[str, int] = {
    "LOR": 1,
    "LAND": 2,
    "EQL": 3,
    "NEQ": 3,
    "LSS": 3,
    "LEQ": 3,
    "GTR": 3,
    "GEQ": 3,
    "PLUS": 4,
    "MINUS": 4,
    "STAR": 5,
    "SLASH": 5,
    "PERCENT": 5,
}

UNARY_OPERATORS = {"PLUS", "MINUS", "NOT"}


class Parser:
    def __init__(self, tokens: List[Token], filename: str, source_lines: List[str]):
        self.tokens = tokens
        self.filename = filename
        self.source_lines = source_lines
        self.index = 0

    def parse(self) -> Program:
        statements: List[Statement] = []
        while self._peek().type != "EOF":
            statements.append(self._parse_statement())
        location = SourceLocation(file=self.filename, line=1, column=1, statement="")
        return Program(location=location, statements=statements)

    def _parse_statement(self) -> Statement:
        token = self._peek()
        if token.type == "LBRACE":
            block = self._parse_block()
            self._expect_terminator()
            return block
        if token.type == "IF":
            return self._parse_if()
        if token.type == "SEMICOLON":
            self._consume("SEMICOLON")
            return EmptyStatement(location=self._location_from_token(token))
        if token.type == "WHILE":
            return self._parse_while()
        if token.type == "RETURN":
            return self._parse_return()
        if token.type in ("IDENT", "LBRACKET", "LPAREN"):
            expr = self._parse_expression()
            if self._match("ASSIGN"):
                value = self._parse_expression()
                self._expect_terminator()
                return Assignment(location=self._location_from_token(token), target=expr, expression=value)
            return ExpressionStatement(location=self._location_from_token(token), expression=expr)
        raise self._error(token, "invalid statement")

    def _parse_if(self) -> IfStatement:
        keyword = self._consume("IF")
        condition = self._parse_expression()
        if self._peek().type != "LBRACE":
            raise self._error(self._peek(), "if statement missing body")
        then_block = self._parse_block()
        else_branch: Optional[Union[IfStatement, Block]] = None
        if self._match("ELSE"):
            following = self._peek()
            if following.type == "IF":
                else_branch = self._parse_if()
            elif following.type == "LBRACE":
                else_branch = self._parse_block()
                self._expect_terminator()
            else:
                raise self._error(following, "else must be followed by if statement or block")
        else:
            self._expect_terminator()
        return IfStatement(
            location=self._location_from_token(keyword),
            condition=condition,
            then_block=then_block,
            else_branch=else_branch,
        )

    def _parse_while(self) -> WhileStatement:
        keyword = self._consume("WHILE")
        condition = self._parse_expression()
        if self._peek().type != "LBRACE":
            raise self._error(self._peek(), "while statement missing body")
        block = self._parse_block()
        return WhileStatement(location=self._location_from_token(keyword), condition=condition, block=block)

    def _parse_return(self) -> ReturnStatement:
        keyword = self._consume("RETURN")
        expression: Optional[Expression] = None
        if self._peek().type not in ("SEMICOLON", "RBRACE"):
            expression = self._parse_expression()
        self._expect_terminator()
        return ReturnStatement(location=self._location_from_token(keyword), expression=expression)

    def _parse_block(self) -> Block:
        start = self._consume("LBRACE")
        statements: List[Statement] = []
        while self._peek().type not in ("RBRACE", "EOF"):
            statements.append(self._parse_statement())
        if self._peek().type == "EOF":
            raise self._error(self._peek(), "expected } at end of block")
        self._consume("RBRACE")
        return Block(location=self._location_from_token(start), statements=statements)

    def _expect_terminator(self) -> None:
        token = self._peek()
        if token.type in ("RPAREN", "RBRACKET"):
            return
        if token.type != "SEMICOLON":
            raise self._error(token, "expected ;")
        self.index += 1

    def _parse_expression(self) -> Expression:
        return self._parse_binary(LOWEST_PRECEDENCE + 1)

    def _parse_binary(self, min_precedence: int) -> Expression:
        left = self._parse_unary()
        while True:
            op = self._peek()
            precedence = PRECEDENCE.get(op.type, LOWEST_PRECEDENCE)
            if precedence < min_precedence:
                return left
            self.index += 1
            right = self._parse_binary(precedence + 1)
            left = BinaryExpression(location=left.location, left=left, op=op, right=right)

    def _parse_unary(self) -> Expression:
        op = self._peek()
        if op.type in UNARY_OPERATORS:
            self.index += 1
            operand = self._parse_unary()
            return UnaryExpression(location=self._location_from_token(op), op=op, operand=operand)
        return self._parse_postfix()

    def _parse_postfix(self) -> Expression:
        expr = self._parse_operand()
        while True:
            token = self._peek()
            location = self._location_from_token(token)
            if self._match("PERIOD"):
                if self._peek().type != "IDENT":
                    raise self._error(self._peek(), "expected selector")
                expr = SelectorExpression(location=location, base=expr, selector=self._parse_identifier())
            elif self._match("LBRACKET"):
                index = self._parse_expression()
                if self._peek().type != "RBRACKET":
                    raise self._error(self._peek(), "expected ] in index expression")
                self._consume("RBRACKET")
                expr = IndexExpression(location=location, base=expr, index=index)
            elif self._match("LPAREN"):
                args: List[Expression] = []
                while self._peek().type not in ("RPAREN", "EOF"):
                    args.append(self._parse_expression())
                    self._match("COMMA")
                if self._peek().type == "EOF":
                    raise self._error(self._peek(), "expected ) at end of call")
                self._consume("RPAREN")
                expr = CallExpression(location=location, callee=expr, args=args)
            else:
                return expr

    def _parse_operand(self) -> Expression:
        token = self._peek()
        if token.type == "IDENT":
            return self._parse_identifier()
        if token.type == "NUMBER":
            self.index += 1
            return NumberLiteral(location=self._location_from_token(token), value=int(token.value))
        if token.type == "STRING":
            self.index += 1
            return StringLiteral(location=self._location_from_token(token), value=decode_string(token.value))
        if token.type == "LPAREN":
            self.index += 1
            inner = self._parse_expression()
            if self._peek().type != "RPAREN":
                raise self._error(token, "expected ) following (")
            self._consume("RPAREN")
            return ParenExpression(location=self._location_from_token(token), expression=inner)
        if token.type == "LBRACKET":
            return self._parse_array_literal()
        if token.type == "FUNC":
            return self._parse_func_literal()
        raise self._error(token, "bad expression")

    def _parse_array_literal(self) -> ArrayLiteral:
        lbracket = self._consume("LBRACKET")
        elements: List[Expression] = []
        while self._peek().type not in ("RBRACKET", "EOF"):
            start = self._peek()
            element = self._parse_expression()
            if self._match("COLON"):
                value = self._parse_expression()
                element = KeyValue(location=self._location_from_token(start), key=element, value=value)
            elements.append(element)
            self._match("COMMA")
        if self._peek().type == "EOF":
            raise self._error(self._peek(), "expected ] at end of array")
        self._consume("RBRACKET")
        return ArrayLiteral(location=self._location_from_token(lbracket), elements=elements)

    def _parse_func_literal(self) -> FuncLiteral:
        keyword = self._consume("FUNC")
        if self._peek().type != "LPAREN":
            raise self._error(self._peek(), "expected ( at beginning of parameter list")
        self._consume("LPAREN")
        params: List[Identifier] = []
        while self._peek().type not in ("RPAREN", "EOF"):
            params.append(self._parse_identifier())
            self._match("COMMA")
        if self._peek().type == "EOF":
            raise self._error(self._peek(), "expected ) at end of parameter list")
        self._consume("RPAREN")
        if self._peek().type != "LBRACE":
            raise self._error(self._peek(), "expected { at beginning of function body")
        body = self._parse_block()
        return FuncLiteral(location=self._location_from_token(keyword), params=params, body=body)

    def _parse_identifier(self) -> Identifier:
        token = self._peek()
        if token.type != "IDENT":
            raise self._error(token, "expected identifier")
        self.index += 1
        return Identifier(location=self._location_from_token(token), name=token.value)

    def _consume(self, token_type: str) -> Token:
        token = self._peek()
        if token.type != token_type:
            raise self._error(token, f"expected token {token_type} but found {token.type}")
        self.index += 1
        return token

    def _match(self, token_type: str) -> bool:
        if self._peek().type == token_type:
            self.index += 1
            return True
        return False

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _error(self, token: Token, message: str) -> MiniParseError:
        return MiniParseError(f"{self.filename}:{token.line}:{token.column}: {message}")

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)
