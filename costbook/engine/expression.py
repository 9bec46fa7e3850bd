"""
Formula evaluator for component quantity formulas.

Formulas are data, not code. Nothing here calls eval(); a formula is
tokenized, converted to postfix with the shunting-yard algorithm and run
on a numeric stack.

Grammar:
  numbers          12, 0.5, .5, 2,5 (decimal comma outside function calls)
  identifiers      parameters or constants PI, E (case-insensitive)
  operators        + - * / ^   (^ binds tightest, right-associative)
  unary            -x, +x
  functions        SUM(a,b) AVG(a,b) MIN(a,b) MAX(a,b) ROUND(x,n) CEIL(x) FLOOR(x)

Division by zero gives inf/nan instead of raising; callers decide whether
a non-finite quantity is fatal.
"""

import logging
import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Dict, Iterable, List, Mapping, NamedTuple, Tuple

from .errors import (
    ArityError,
    FormulaSyntaxError,
    NonFiniteResultError,
    UnknownIdentifierError,
)
from .params import numeric_context

logger = logging.getLogger(__name__)


# --- Token kinds ---
NUMBER = "number"
IDENT = "ident"
OP = "op"
COMMA = "comma"
LPAREN = "lparen"
RPAREN = "rparen"

# --- Postfix instruction kinds ---
PUSH_NUMBER = "num"
PUSH_NAME = "name"
BINARY = "binary"
NEGATE = "neg"
CALL = "call"

BINARY_OPERATORS = "+-*/^"

# Unary minus sits between * / and ^ so that -2^2 == -4 and 2^-1 == 0.5
PRECEDENCE = {"+": 1, "-": 1, "*": 2, "/": 2, NEGATE: 3, "^": 4}
RIGHT_ASSOCIATIVE = {"^", NEGATE}

CONSTANTS: Dict[str, float] = {"PI": math.pi, "E": math.e}


class Token(NamedTuple):
    kind: str
    value: object
    pos: int


def _divide(a: float, b: float) -> float:
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def _power(a: float, b: float) -> float:
    if a == 0 and b < 0:
        return math.inf
    try:
        return math.pow(a, b)
    except OverflowError:
        return math.inf
    except ValueError:
        # negative base with a fractional exponent
        return math.nan


def _round(x: float, n: float) -> float:
    """Round half away from zero to n decimals (n may be negative)."""
    if not math.isfinite(x) or not math.isfinite(n):
        return x
    digits = int(n)
    if digits > 15:
        return x
    factor = 10.0 ** max(digits, -300)
    scaled = abs(x) * factor
    # already integral at this precision
    if not math.isfinite(scaled) or scaled >= 2.0 ** 52:
        return x
    return math.copysign(math.floor(scaled + 0.5) / factor, x)


def _ceil(x: float) -> float:
    return float(math.ceil(x)) if math.isfinite(x) else x


def _floor(x: float) -> float:
    return float(math.floor(x)) if math.isfinite(x) else x


_BINARY: Dict[str, Callable[[float, float], float]] = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
    "/": _divide,
    "^": _power,
}


class BuiltIn(NamedTuple):
    arity: int
    fn: Callable[..., float]


FUNCTIONS: Dict[str, BuiltIn] = {
    "SUM": BuiltIn(2, lambda a, b: a + b),
    "AVG": BuiltIn(2, lambda a, b: (a + b) / 2.0),
    "MIN": BuiltIn(2, min),
    "MAX": BuiltIn(2, max),
    "ROUND": BuiltIn(2, _round),
    "CEIL": BuiltIn(1, _ceil),
    "FLOOR": BuiltIn(1, _floor),
}


# ============================================================
# Tokenizer
# ============================================================

def _is_ident_start(c: str) -> bool:
    return c.isascii() and (c.isalpha() or c == "_")


def _is_ident_char(c: str) -> bool:
    return c.isascii() and (c.isalnum() or c == "_")


def _is_digit(c: str) -> bool:
    return "0" <= c <= "9"


def tokenize(formula: str) -> List[Token]:
    """
    Split a formula into tokens, rejecting any character outside the grammar.

    A comma between two digits is a decimal comma unless it appears
    directly inside a function call's argument list, where it always
    separates arguments: "2,5*L" is 2.5*L but "MAX(1,5)" has two arguments.
    """
    if not isinstance(formula, str):
        raise FormulaSyntaxError("Formula must be a string", {"formula": repr(formula)})

    text = formula.strip()
    offset = len(formula) - len(formula.lstrip())
    if text.startswith("="):
        text = text[1:]
        offset += 1

    tokens: List[Token] = []
    # one entry per open parenthesis: True when it opens a function call
    paren_is_call: List[bool] = []
    i = 0
    n = len(text)

    while i < n:
        c = text[i]
        pos = i + offset

        if c.isspace():
            i += 1
            continue

        if _is_digit(c) or (c == "." and i + 1 < n and _is_digit(text[i + 1])):
            in_call = bool(paren_is_call) and paren_is_call[-1]
            j = i
            chars = []
            seen_sep = False
            while j < n:
                ch = text[j]
                if _is_digit(ch):
                    chars.append(ch)
                elif ch == "." or (
                    ch == "," and not in_call and not seen_sep
                    and j > i and _is_digit(text[j - 1])
                    and j + 1 < n and _is_digit(text[j + 1])
                ):
                    if seen_sep:
                        raise FormulaSyntaxError(
                            f"Malformed number at position {pos}",
                            {"formula": formula, "position": pos},
                        )
                    seen_sep = True
                    chars.append(".")
                else:
                    break
                j += 1
            tokens.append(Token(NUMBER, float("".join(chars)), pos))
            i = j
            continue

        if _is_ident_start(c):
            j = i + 1
            while j < n and _is_ident_char(text[j]):
                j += 1
            tokens.append(Token(IDENT, text[i:j].upper(), pos))
            i = j
            continue

        if c in BINARY_OPERATORS:
            tokens.append(Token(OP, c, pos))
        elif c == "(":
            is_call = bool(tokens) and tokens[-1].kind == IDENT
            paren_is_call.append(is_call)
            tokens.append(Token(LPAREN, "(", pos))
        elif c == ")":
            if not paren_is_call:
                raise FormulaSyntaxError(
                    f"Unbalanced parentheses: unexpected ')' at position {pos}",
                    {"formula": formula, "position": pos},
                )
            paren_is_call.pop()
            tokens.append(Token(RPAREN, ")", pos))
        elif c == ",":
            tokens.append(Token(COMMA, ",", pos))
        else:
            raise FormulaSyntaxError(
                f"Unexpected character {c!r} at position {pos}",
                {"formula": formula, "position": pos, "character": c},
            )
        i += 1

    if paren_is_call:
        raise FormulaSyntaxError("Unbalanced parentheses: missing ')'", {"formula": formula})
    return tokens


# ============================================================
# Shunting-yard
# ============================================================

def to_postfix(tokens: List[Token], formula: str = "") -> List[tuple]:
    """
    Convert tokens to postfix instructions.

    An identifier immediately followed by "(" is resolved as a function
    here, and its argument count is checked against the built-in's arity,
    so arity errors surface before any evaluation.
    """
    output: List[tuple] = []
    # entries: ("op", symbol) | ("paren", call_frame_or_None)
    stack: List[tuple] = []
    expect_operand = True
    i = 0

    def fail(message: str, token: Token = None):
        details = {"formula": formula}
        if token is not None:
            details["position"] = token.pos
        raise FormulaSyntaxError(message, details)

    def pop_operators_until_paren():
        while stack and stack[-1][0] == "op":
            symbol = stack.pop()[1]
            output.append((NEGATE,) if symbol == NEGATE else (BINARY, symbol))

    while i < len(tokens):
        tk = tokens[i]

        if tk.kind == NUMBER:
            if not expect_operand:
                fail(f"Missing operator before number at position {tk.pos}", tk)
            output.append((PUSH_NUMBER, tk.value))
            expect_operand = False

        elif tk.kind == IDENT:
            if not expect_operand:
                fail(f"Missing operator before {tk.value!r} at position {tk.pos}", tk)
            nxt = tokens[i + 1] if i + 1 < len(tokens) else None
            if nxt is not None and nxt.kind == LPAREN:
                if tk.value not in FUNCTIONS:
                    fail(f"Unknown function {tk.value}() at position {tk.pos}", tk)
                # frame: [name, separators seen, position]
                stack.append(("paren", [tk.value, 0, tk.pos]))
                i += 2
                expect_operand = True
                if i < len(tokens) and tokens[i].kind == RPAREN:
                    # empty argument list
                    name = stack.pop()[1][0]
                    raise ArityError(name, FUNCTIONS[name].arity, 0)
                continue
            output.append((PUSH_NAME, tk.value))
            expect_operand = False

        elif tk.kind == OP:
            if expect_operand:
                if tk.value == "-":
                    stack.append(("op", NEGATE))
                elif tk.value != "+":
                    fail(f"Missing operand before {tk.value!r} at position {tk.pos}", tk)
                i += 1
                continue
            prec = PRECEDENCE[tk.value]
            while stack and stack[-1][0] == "op":
                top = stack[-1][1]
                top_prec = PRECEDENCE[top]
                if top_prec > prec or (top_prec == prec and tk.value not in RIGHT_ASSOCIATIVE):
                    stack.pop()
                    output.append((NEGATE,) if top == NEGATE else (BINARY, top))
                else:
                    break
            stack.append(("op", tk.value))
            expect_operand = True

        elif tk.kind == LPAREN:
            if not expect_operand:
                fail(f"Missing operator before '(' at position {tk.pos}", tk)
            stack.append(("paren", None))
            expect_operand = True

        elif tk.kind == COMMA:
            if expect_operand:
                fail(f"Missing argument before ',' at position {tk.pos}", tk)
            pop_operators_until_paren()
            if not stack or stack[-1][1] is None:
                fail(f"Unexpected ',' at position {tk.pos}", tk)
            stack[-1][1][1] += 1
            expect_operand = True

        elif tk.kind == RPAREN:
            if expect_operand:
                fail(f"Missing operand before ')' at position {tk.pos}", tk)
            pop_operators_until_paren()
            if not stack:
                fail(f"Unbalanced parentheses at position {tk.pos}", tk)
            frame = stack.pop()[1]
            if frame is not None:
                name, separators, _ = frame
                argc = separators + 1
                arity = FUNCTIONS[name].arity
                if argc != arity:
                    raise ArityError(name, arity, argc)
                output.append((CALL, name, argc))
            expect_operand = False

        i += 1

    if expect_operand:
        if not tokens:
            fail("Empty formula")
        fail("Unexpected end of formula")

    while stack:
        kind, value = stack.pop()
        if kind == "paren":
            fail("Unbalanced parentheses: missing ')'")
        output.append((NEGATE,) if value == NEGATE else (BINARY, value))

    return output


# ============================================================
# Compiled formulas + evaluation
# ============================================================

@dataclass(frozen=True)
class Formula:
    """A parsed formula, reusable across evaluations."""
    source: str
    postfix: Tuple[tuple, ...]
    identifiers: Tuple[str, ...]

    def evaluate(self, context: Mapping[str, float]) -> float:
        return evaluate_postfix(self.postfix, context)


@lru_cache(maxsize=2048)
def compile_formula(formula: str) -> Formula:
    """Tokenize and convert once; raises FormulaSyntaxError / ArityError."""
    postfix = tuple(to_postfix(tokenize(formula), formula))
    names = sorted({
        step[1] for step in postfix
        if step[0] == PUSH_NAME and step[1] not in CONSTANTS
    })
    return Formula(source=formula, postfix=postfix, identifiers=tuple(names))


def evaluate_postfix(postfix: Iterable[tuple], context: Mapping[str, float]) -> float:
    """Run postfix instructions. Context keys must already be upper-cased floats."""
    stack: List[float] = []
    for step in postfix:
        kind = step[0]
        if kind == PUSH_NUMBER:
            stack.append(step[1])
        elif kind == PUSH_NAME:
            name = step[1]
            if name in context:
                stack.append(context[name])
            elif name in CONSTANTS:
                stack.append(CONSTANTS[name])
            else:
                raise UnknownIdentifierError(name)
        elif kind == BINARY:
            b = stack.pop()
            a = stack.pop()
            stack.append(_BINARY[step[1]](a, b))
        elif kind == NEGATE:
            stack.append(-stack.pop())
        elif kind == CALL:
            _, name, argc = step
            args = stack[-argc:]
            del stack[-argc:]
            stack.append(float(FUNCTIONS[name].fn(*args)))
    if len(stack) != 1:
        raise FormulaSyntaxError("Malformed formula")
    return stack[0]


def evaluate(formula: str, context: Mapping[str, object]) -> float:
    """
    Evaluate one formula against a flat parameter map.

    Context values are coerced (bool -> 1/0, numeric strings -> float);
    names are matched case-insensitively. Raises FormulaSyntaxError,
    ArityError or UnknownIdentifierError. Non-finite results are returned.
    """
    compiled = compile_formula(formula)
    return compiled.evaluate(numeric_context(context))


def referenced_identifiers(formula: str) -> Tuple[str, ...]:
    """Parameter names (upper-cased) a formula reads, constants excluded."""
    return compile_formula(formula).identifiers


def validate_formula(formula: str, available: Iterable[str] = None) -> Formula:
    """
    Check syntax and arity; when `available` names are given, also check
    that every referenced identifier is among them.
    """
    compiled = compile_formula(formula)
    if available is not None:
        known = {str(name).upper() for name in available}
        for name in compiled.identifiers:
            if name not in known:
                raise UnknownIdentifierError(name)
    return compiled


def require_finite(value: float, formula: str = "") -> float:
    if not math.isfinite(value):
        raise NonFiniteResultError(
            f"Formula produced a non-finite result ({value})",
            {"formula": formula, "value": str(value)},
        )
    return value
