"""
Simple expression dialect.

Grammar (lowest to highest precedence):

    expression := or
    or         := and ('||' and)*
    and        := equality ('&&' equality)*
    equality   := relation (('==' | '!=') relation)*
    relation   := unary (('<' | '<=' | '>' | '>=') unary)*
    unary      := '!' unary | postfix
    postfix    := primary ('.' IDENT | '[' expression ']')*
    primary    := REFERENCE | STRING | NUMBER | true | false | null
                | '(' expression ')'

References resolve against the execution context. A missing path yields
UNDEFINED, which is falsy and compares unequal to everything except null.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional

from ..exceptions import ExpressionSyntaxError
from .references import (
    REFERENCE_PATTERN,
    UNDEFINED,
    RuntimeExpression,
    descend,
    resolve_reference,
)
from .substitution import TemplateSubstitutor


logger = logging.getLogger(__name__)

NUMBER_PATTERN = re.compile(r'-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?')
IDENT_PATTERN = re.compile(r'[A-Za-z_][A-Za-z0-9_]*')

OPERATORS = ('==', '!=', '<=', '>=', '&&', '||', '<', '>', '!')
PUNCTUATION = {'(': 'LPAREN', ')': 'RPAREN', '[': 'LBRACKET', ']': 'RBRACKET', '.': 'DOT'}
KEYWORDS = {'true': True, 'false': False, 'null': None}
ESCAPES = {'n': '\n', 't': '\t', 'r': '\r'}

# Token types after which '-' starts a number rather than being rejected
OPERAND_BOUNDARY = {None, 'OP', 'LPAREN', 'LBRACKET'}


@dataclass
class Token:
    type: str
    value: Any
    position: int


# --- AST ---------------------------------------------------------------------

@dataclass
class Literal:
    value: Any


@dataclass
class Reference:
    expression: RuntimeExpression


@dataclass
class Member:
    target: Any
    key: Any


@dataclass
class Unary:
    operator: str
    operand: Any


@dataclass
class Binary:
    operator: str
    left: Any
    right: Any


# --- Lexer -------------------------------------------------------------------

def tokenize(text: str) -> List[Token]:
    """Split an expression into tokens."""
    tokens: List[Token] = []
    position = 0
    length = len(text)

    while position < length:
        char = text[position]

        if char.isspace():
            position += 1
            continue

        previous = tokens[-1].type if tokens else None

        if char == '$':
            match = REFERENCE_PATTERN.match(text, position)
            if not match:
                raise _syntax_error(text, position, "invalid reference")
            tokens.append(Token('REFERENCE', RuntimeExpression.parse(match.group(0)), position))
            position = match.end()
            continue

        if char in ('"', "'"):
            value, position = _read_string(text, position)
            tokens.append(Token('STRING', value, position))
            continue

        if char.isdigit() or (char == '-' and previous in OPERAND_BOUNDARY):
            match = NUMBER_PATTERN.match(text, position)
            if match:
                raw = match.group(0)
                number = float(raw) if any(c in raw for c in '.eE') else int(raw)
                tokens.append(Token('NUMBER', number, position))
                position = match.end()
                continue

        operator = next((op for op in OPERATORS if text.startswith(op, position)), None)
        if operator:
            tokens.append(Token('OP', operator, position))
            position += len(operator)
            continue

        if char in PUNCTUATION:
            tokens.append(Token(PUNCTUATION[char], char, position))
            position += 1
            continue

        match = IDENT_PATTERN.match(text, position)
        if match:
            word = match.group(0)
            if previous == 'DOT':
                tokens.append(Token('IDENT', word, position))
            elif word in KEYWORDS:
                tokens.append(Token('LITERAL', KEYWORDS[word], position))
            else:
                raise _syntax_error(text, position, f"unexpected identifier '{word}'")
            position = match.end()
            continue

        raise _syntax_error(text, position, f"unexpected character '{char}'")

    tokens.append(Token('EOF', None, length))
    return tokens


def _read_string(text: str, start: int):
    quote = text[start]
    chars = []
    position = start + 1
    while position < len(text):
        char = text[position]
        if char == '\\' and position + 1 < len(text):
            escaped = text[position + 1]
            chars.append(ESCAPES.get(escaped, escaped))
            position += 2
            continue
        if char == quote:
            return ''.join(chars), position + 1
        chars.append(char)
        position += 1
    raise _syntax_error(text, start, "unterminated string")


def _syntax_error(text: str, position: int, reason: str) -> ExpressionSyntaxError:
    return ExpressionSyntaxError(
        f"Invalid expression '{text}' at {position}: {reason}",
        {'expression': text, 'position': position},
    )


# --- Parser ------------------------------------------------------------------

class Parser:
    """Recursive-descent parser producing an expression tree."""

    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.index = 0

    def parse(self):
        node = self.parse_or()
        if self.current.type != 'EOF':
            raise _syntax_error(self.text, self.current.position, "unexpected trailing input")
        return node

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def match_op(self, *operators: str) -> Optional[str]:
        if self.current.type == 'OP' and self.current.value in operators:
            return self.advance().value
        return None

    def expect(self, token_type: str) -> Token:
        if self.current.type != token_type:
            raise _syntax_error(
                self.text, self.current.position, f"expected {token_type}, got {self.current.type}"
            )
        return self.advance()

    def parse_or(self):
        node = self.parse_and()
        while self.match_op('||'):
            node = Binary('||', node, self.parse_and())
        return node

    def parse_and(self):
        node = self.parse_equality()
        while self.match_op('&&'):
            node = Binary('&&', node, self.parse_equality())
        return node

    def parse_equality(self):
        node = self.parse_relation()
        while True:
            operator = self.match_op('==', '!=')
            if not operator:
                return node
            node = Binary(operator, node, self.parse_relation())

    def parse_relation(self):
        node = self.parse_unary()
        while True:
            operator = self.match_op('<', '<=', '>', '>=')
            if not operator:
                return node
            node = Binary(operator, node, self.parse_unary())

    def parse_unary(self):
        if self.match_op('!'):
            return Unary('!', self.parse_unary())
        return self.parse_postfix()

    def parse_postfix(self):
        node = self.parse_primary()
        while True:
            if self.current.type == 'DOT':
                self.advance()
                node = Member(node, Literal(self.expect('IDENT').value))
            elif self.current.type == 'LBRACKET':
                self.advance()
                key = self.parse_or()
                self.expect('RBRACKET')
                node = Member(node, key)
            else:
                return node

    def parse_primary(self):
        token = self.current
        if token.type in ('STRING', 'NUMBER', 'LITERAL'):
            self.advance()
            return Literal(token.value)
        if token.type == 'REFERENCE':
            self.advance()
            return Reference(token.value)
        if token.type == 'LPAREN':
            self.advance()
            node = self.parse_or()
            self.expect('RPAREN')
            return node
        raise _syntax_error(self.text, token.position, f"unexpected {token.type}")


# --- Evaluation --------------------------------------------------------------

def is_truthy(value: Any) -> bool:
    """Truthiness shared by the simple dialect and criteria."""
    if value is None or value is UNDEFINED:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) > 0
    return True


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce_number(value: Any) -> Optional[float]:
    if _is_number(value):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def loose_equals(left: Any, right: Any) -> bool:
    """Equality with string/number coercion; undefined equals only null."""
    if left is UNDEFINED or right is UNDEFINED or left is None or right is None:
        return left in (None, UNDEFINED) and right in (None, UNDEFINED)

    if _is_number(left) and isinstance(right, str) or isinstance(left, str) and _is_number(right):
        left_number, right_number = _coerce_number(left), _coerce_number(right)
        if left_number is None or right_number is None:
            return False
        return left_number == right_number

    return left == right


def compare(operator: str, left: Any, right: Any) -> bool:
    """Ordering comparison; undefined or incompatible operands give False."""
    if _is_number(left) and _is_number(right) or isinstance(left, str) and isinstance(right, str):
        pass
    else:
        left, right = _coerce_number(left), _coerce_number(right)
        if left is None or right is None:
            return False

    if operator == '<':
        return left < right
    if operator == '<=':
        return left <= right
    if operator == '>':
        return left > right
    return left >= right


def evaluate_node(node: Any, context: Any) -> Any:
    """Evaluate a parsed expression tree against the context."""
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Reference):
        return resolve_reference(node.expression, context)
    if isinstance(node, Member):
        target = evaluate_node(node.target, context)
        key = evaluate_node(node.key, context)
        if isinstance(key, float) and key.is_integer():
            key = int(key)
        return descend(target, key)
    if isinstance(node, Unary):
        return not is_truthy(evaluate_node(node.operand, context))
    if isinstance(node, Binary):
        if node.operator == '&&':
            return is_truthy(evaluate_node(node.left, context)) and is_truthy(evaluate_node(node.right, context))
        if node.operator == '||':
            return is_truthy(evaluate_node(node.left, context)) or is_truthy(evaluate_node(node.right, context))

        left = evaluate_node(node.left, context)
        right = evaluate_node(node.right, context)
        if node.operator == '==':
            return loose_equals(left, right)
        if node.operator == '!=':
            return not loose_equals(left, right)
        return compare(node.operator, left, right)
    raise ExpressionSyntaxError(f"Unknown expression node: {node!r}")


class SimpleEvaluator:
    """Evaluates simple-dialect expressions."""

    def __init__(self):
        self.substitutor = TemplateSubstitutor()

    def evaluate(self, expression: str, context: Any, strict: bool = False) -> Any:
        """
        Evaluate an expression.

        Args:
            expression: Expression text
            context: ExecutionContext or plain mapping keyed by root name
            strict: Raise on unparseable input instead of treating it as text

        Returns:
            Native value for a bare reference, a boolean for comparisons and
            logical operators, or interpolated text when the input is not an
            expression and strict is False

        Raises:
            UnknownRootError: If any reference names an unknown root
            ExpressionSyntaxError: If strict and the expression does not parse
        """
        text = expression.strip()
        if REFERENCE_PATTERN.fullmatch(text):
            return resolve_reference(text, context)

        try:
            tree = Parser(text).parse()
        except ExpressionSyntaxError:
            if strict:
                raise
            logger.debug(f"Treating as text template: {expression!r}")
            return self.substitutor.interpolate(expression, context)

        return evaluate_node(tree, context)
