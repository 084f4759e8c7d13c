"""Condition mini-language used to gate endings and choices.

Two literal forms are special-cased::

    chose:<choice_id>       true when the choice was taken
    notchose:<choice_id>    the negation

Anything else is parsed as a small boolean/arithmetic expression::

    chose('a') and not chose("b")
    (1 + 2) * 3 >= 9 || false

The only function is ``chose(<id>)``. Evaluation never raises: errors and
results that are neither booleans nor integers evaluate to False.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Collection, List, Sequence, Tuple, Union

from talegraph.core.logger import get_logger

logger = get_logger(__name__)

Value = Union[bool, int, float, str]


class ConditionSyntaxError(ValueError):
    """Raised when an expression cannot be tokenized or parsed."""


class ConditionEvaluationError(ValueError):
    """Raised when a parsed expression cannot be evaluated."""


@dataclass(frozen=True, slots=True)
class Token:
    kind: str
    text: str
    position: int


@dataclass(frozen=True, slots=True)
class LiteralExpr:
    value: Value


@dataclass(frozen=True, slots=True)
class UnaryExpr:
    op: str
    operand: "Expr"


@dataclass(frozen=True, slots=True)
class BinaryExpr:
    op: str
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True, slots=True)
class CallExpr:
    name: str
    args: Tuple["Expr", ...]


@dataclass(frozen=True, slots=True)
class NameExpr:
    name: str


Expr = Union[LiteralExpr, UnaryExpr, BinaryExpr, CallExpr, NameExpr]

_TWO_CHAR_OPS = ("||", "&&", "==", "!=", "<>", "<=", ">=")
_ONE_CHAR_OPS = "<>=!+-*/%(),"
_KEYWORD_OPS = {"and": "&&", "or": "||", "not": "!"}
_COMPARISON_OPS = {"==", "!=", "<", "<=", ">", ">="}


def tokenize(expression: str) -> List[Token]:
    tokens: List[Token] = []
    index = 0
    length = len(expression)
    while index < length:
        char = expression[index]
        if char.isspace():
            index += 1
            continue
        if char in "'\"":
            end = expression.find(char, index + 1)
            if end < 0:
                raise ConditionSyntaxError(f"Unterminated string at {index}.")
            tokens.append(Token("string", expression[index + 1 : end], index))
            index = end + 1
            continue
        if char.isdigit() or (char == "." and index + 1 < length and expression[index + 1].isdigit()):
            start = index
            while index < length and (expression[index].isdigit() or expression[index] == "."):
                index += 1
            tokens.append(Token("number", expression[start:index], start))
            continue
        if char.isalpha() or char == "_":
            start = index
            while index < length and (expression[index].isalnum() or expression[index] in "_."):
                index += 1
            word = expression[start:index]
            lowered = word.lower()
            if lowered in _KEYWORD_OPS:
                tokens.append(Token("op", _KEYWORD_OPS[lowered], start))
            elif lowered in ("true", "false"):
                tokens.append(Token("bool", lowered, start))
            else:
                tokens.append(Token("name", word, start))
            continue
        pair = expression[index : index + 2]
        if pair in _TWO_CHAR_OPS:
            tokens.append(Token("op", "!=" if pair == "<>" else pair, index))
            index += 2
            continue
        if char in _ONE_CHAR_OPS:
            kind = {"(": "lparen", ")": "rparen", ",": "comma"}.get(char, "op")
            tokens.append(Token(kind, "==" if char == "=" else char, index))
            index += 1
            continue
        raise ConditionSyntaxError(f"Unexpected character {char!r} at {index}.")
    tokens.append(Token("eof", "", length))
    return tokens


class _Parser:
    """Recursive-descent parser; one method per precedence level."""

    def __init__(self, tokens: Sequence[Token]) -> None:
        self._tokens = tokens
        self._pos = 0

    def parse(self) -> Expr:
        expr = self._or()
        token = self._peek()
        if token.kind != "eof":
            raise ConditionSyntaxError(f"Unexpected {token.text!r} at {token.position}.")
        return expr

    def _peek(self) -> Token:
        return self._tokens[self._pos]

    def _advance(self) -> Token:
        token = self._tokens[self._pos]
        self._pos += 1
        return token

    def _match_op(self, *ops: str) -> str | None:
        token = self._peek()
        if token.kind == "op" and token.text in ops:
            self._pos += 1
            return token.text
        return None

    def _or(self) -> Expr:
        left = self._and()
        while self._match_op("||"):
            left = BinaryExpr("||", left, self._and())
        return left

    def _and(self) -> Expr:
        left = self._not()
        while self._match_op("&&"):
            left = BinaryExpr("&&", left, self._not())
        return left

    def _not(self) -> Expr:
        if self._match_op("!"):
            return UnaryExpr("!", self._not())
        return self._comparison()

    def _comparison(self) -> Expr:
        left = self._additive()
        while True:
            op = self._match_op(*_COMPARISON_OPS)
            if op is None:
                return left
            left = BinaryExpr(op, left, self._additive())

    def _additive(self) -> Expr:
        left = self._multiplicative()
        while True:
            op = self._match_op("+", "-")
            if op is None:
                return left
            left = BinaryExpr(op, left, self._multiplicative())

    def _multiplicative(self) -> Expr:
        left = self._unary()
        while True:
            op = self._match_op("*", "/", "%")
            if op is None:
                return left
            left = BinaryExpr(op, left, self._unary())

    def _unary(self) -> Expr:
        if self._match_op("-"):
            return UnaryExpr("-", self._unary())
        return self._primary()

    def _primary(self) -> Expr:
        token = self._advance()
        if token.kind == "number":
            try:
                value: Value = float(token.text) if "." in token.text else int(token.text)
            except ValueError as exc:
                raise ConditionSyntaxError(f"Invalid number {token.text!r}.") from exc
            return LiteralExpr(value)
        if token.kind == "string":
            return LiteralExpr(token.text)
        if token.kind == "bool":
            return LiteralExpr(token.text == "true")
        if token.kind == "lparen":
            expr = self._or()
            if self._advance().kind != "rparen":
                raise ConditionSyntaxError(f"Missing ')' for '(' at {token.position}.")
            return expr
        if token.kind == "name":
            if self._peek().kind == "lparen":
                self._advance()
                return CallExpr(token.text.lower(), self._arguments())
            return NameExpr(token.text)
        raise ConditionSyntaxError(f"Unexpected {token.text or 'end of input'!r} at {token.position}.")

    def _arguments(self) -> Tuple[Expr, ...]:
        args: List[Expr] = []
        if self._peek().kind == "rparen":
            self._advance()
            return ()
        while True:
            args.append(self._or())
            token = self._advance()
            if token.kind == "rparen":
                return tuple(args)
            if token.kind != "comma":
                raise ConditionSyntaxError(f"Expected ',' or ')' at {token.position}.")


def parse_condition(expression: str) -> Expr:
    """Parse an expression into its AST; raise ConditionSyntaxError on bad input."""
    try:
        return _Parser(tokenize(expression)).parse()
    except RecursionError as exc:
        raise ConditionSyntaxError("Expression is nested too deeply.") from exc


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    return value


class _Evaluator:
    def __init__(self, is_chosen: Callable[[str], bool]) -> None:
        self._is_chosen = is_chosen

    def eval(self, expr: Expr) -> Value:
        if isinstance(expr, LiteralExpr):
            return expr.value
        if isinstance(expr, UnaryExpr):
            operand = self.eval(expr.operand)
            if expr.op == "!":
                return not self._truth(operand)
            return -self._number(operand)
        if isinstance(expr, BinaryExpr):
            return self._binary(expr)
        if isinstance(expr, CallExpr):
            return self._call(expr)
        raise ConditionEvaluationError(f"Unknown parameter '{expr.name}'.")

    def _binary(self, expr: BinaryExpr) -> Value:
        if expr.op == "&&":
            return self._truth(self.eval(expr.left)) and self._truth(self.eval(expr.right))
        if expr.op == "||":
            return self._truth(self.eval(expr.left)) or self._truth(self.eval(expr.right))
        left = self.eval(expr.left)
        right = self.eval(expr.right)
        if expr.op == "==":
            return left == right
        if expr.op == "!=":
            return left != right
        if expr.op in ("<", "<=", ">", ">="):
            if isinstance(left, str) and isinstance(right, str):
                pair: Tuple[Value, Value] = (left, right)
            else:
                pair = (self._number(left), self._number(right))
            return {
                "<": pair[0] < pair[1],
                "<=": pair[0] <= pair[1],
                ">": pair[0] > pair[1],
                ">=": pair[0] >= pair[1],
            }[expr.op]
        if expr.op == "+" and isinstance(left, str) and isinstance(right, str):
            return left + right
        lhs = self._number(left)
        rhs = self._number(right)
        try:
            if expr.op == "+":
                return lhs + rhs
            if expr.op == "-":
                return lhs - rhs
            if expr.op == "*":
                return lhs * rhs
            if expr.op == "/":
                return lhs / rhs
            return lhs % rhs
        except ZeroDivisionError as exc:
            raise ConditionEvaluationError("Division by zero.") from exc
        except OverflowError as exc:
            raise ConditionEvaluationError(f"Result of {expr.op!r} is out of range.") from exc

    def _call(self, expr: CallExpr) -> Value:
        if expr.name != "chose":
            raise ConditionEvaluationError(f"Unknown function '{expr.name}'.")
        if not expr.args:
            return False
        argument = self.eval(expr.args[0])
        choice_id = _strip_quotes(str(argument)).strip()
        return bool(choice_id) and self._is_chosen(choice_id)

    @staticmethod
    def _truth(value: Value) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        raise ConditionEvaluationError(f"Cannot use {value!r} as a boolean.")

    @staticmethod
    def _number(value: Value) -> int | float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConditionEvaluationError(f"Expected a number, got {value!r}.")
        return value


def evaluate_condition(expression: str | None, chosen_ids: Collection[str]) -> bool:
    """Evaluate ``expression`` against the set of chosen choice ids.

    A blank expression means "no condition" and is True.
    """
    if expression is None or not expression.strip():
        return True
    text = expression.strip()
    lowered = text.lower()
    if lowered.startswith("chose:"):
        choice_id = text[len("chose:") :].strip()
        return bool(choice_id) and choice_id in chosen_ids
    if lowered.startswith("notchose:"):
        choice_id = text[len("notchose:") :].strip()
        return not choice_id or choice_id not in chosen_ids

    try:
        result = _Evaluator(lambda choice_id: choice_id in chosen_ids).eval(parse_condition(text))
    except RecursionError:
        logger.debug("Condition %r evaluated to False: nested too deeply", text)
        return False
    except (ConditionSyntaxError, ConditionEvaluationError) as exc:
        logger.debug("Condition %r evaluated to False: %s", text, exc)
        return False
    if isinstance(result, bool):
        return result
    if isinstance(result, int):
        return result != 0
    return False


def check_condition_syntax(expression: str | None) -> str | None:
    """Return an error message if ``expression`` would not parse, else None."""
    if expression is None or not expression.strip():
        return None
    lowered = expression.strip().lower()
    if lowered.startswith(("chose:", "notchose:")):
        return None
    try:
        parse_condition(expression.strip())
    except ConditionSyntaxError as exc:
        return str(exc)
    return None
