"""
Trigger Expressions for Project Vanguard

A trigger gates when a plan step may start. Triggers arrive from the
generator as strings and are compiled ONCE (at validation time) into a
small AST. The execution engine only ever stores and evaluates the AST.

GRAMMAR:
    trigger    := ""  |  comparison ( combinator comparison )*
    comparison := VARIABLE OPERATOR NUMBER
    combinator := AND | OR          (case-insensitive, && and || accepted)
    OPERATOR   := < | > | <= | >= | == | !=
    VARIABLE   := health_pct | enemy_dist | ally_dist | time
                | enemy_count | ally_count
    NUMBER     := [+-]digits[.digits][%]

Combinators have NO precedence. "A OR B AND C" means "(A OR B) AND C",
evaluated strictly in textual order. Parentheses are not supported.

Examples:
    "health_pct < 20"
    "enemy_dist <= 15 AND ally_count >= 2"
    "health_pct<50 or enemy_count>3"
    ""                                  -> always true (unconditional step)

Every failure (unknown variable, bad number, dangling AND) is a
CompileError raised by compile_trigger(). evaluate() never raises for
syntax reasons because syntax was settled at compile time.
"""

import operator
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Tuple, Union

from vanguard.errors import CompileError


# ════════════════════════════════════════════════════════════════════════════════
# VOCABULARY
# ════════════════════════════════════════════════════════════════════════════════

# Variables a trigger may read. Resolved per tick by the ExecutionContext.
TRIGGER_VARIABLES: Tuple[str, ...] = (
    "health_pct",    # 0-100, this unit's health
    "enemy_dist",    # distance to nearest living enemy (inf if none)
    "ally_dist",     # distance to nearest living ally (inf if none)
    "time",          # seconds since the plan started
    "enemy_count",   # living enemies within sensor range
    "ally_count",    # living allies within sensor range (excluding self)
)

OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    ">": operator.gt,
    "<=": operator.le,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

COMBINATORS = ("AND", "OR")

_COMBINATOR_ALIASES = {"&&": "AND", "||": "OR"}

# Order matters: two-char operators before one-char, numbers before words
_TOKEN_PATTERN = re.compile(r"""
    \s*(?:
        (?P<number>[-+]?(?:\d+\.?\d*|\.\d+)%?)
      | (?P<operator><=|>=|==|!=|<|>)
      | (?P<logic>&&|\|\|)
      | (?P<word>[A-Za-z_][A-Za-z0-9_]*)
      | (?P<junk>\S)
    )
""", re.VERBOSE)

# Resolves a variable name to its live value. Either a callable or a plain
# mapping (handy in tests).
ExecutionContext = Union[Callable[[str], Optional[float]], Mapping[str, float]]


# ════════════════════════════════════════════════════════════════════════════════
# AST
# ════════════════════════════════════════════════════════════════════════════════

def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


@dataclass(frozen=True)
class Comparison:
    """One `variable op number` clause."""
    variable: str
    op: str
    value: float

    def evaluate(self, context: ExecutionContext) -> bool:
        current = _resolve(context, self.variable)
        if current is None:
            return False
        return OPERATORS[self.op](float(current), self.value)

    def __str__(self) -> str:
        return f"{self.variable} {self.op} {_format_number(self.value)}"


@dataclass(frozen=True)
class TriggerAST:
    """
    Compiled trigger: clauses joined left-to-right by combinators.

    len(combinators) == len(clauses) - 1. No clauses = always true.
    """
    clauses: Tuple[Comparison, ...] = ()
    combinators: Tuple[str, ...] = ()
    source: str = ""

    @property
    def always_true(self) -> bool:
        return not self.clauses

    @property
    def variables(self) -> List[str]:
        """Variables read by this trigger, in first-use order."""
        seen: List[str] = []
        for clause in self.clauses:
            if clause.variable not in seen:
                seen.append(clause.variable)
        return seen

    def __str__(self) -> str:
        if not self.clauses:
            return ""
        parts = [str(self.clauses[0])]
        for combinator, clause in zip(self.combinators, self.clauses[1:]):
            parts.append(combinator)
            parts.append(str(clause))
        return " ".join(parts)


ALWAYS_TRUE = TriggerAST()


# ════════════════════════════════════════════════════════════════════════════════
# COMPILE
# ════════════════════════════════════════════════════════════════════════════════

def _tokenize(expr: str) -> List[Tuple[str, str, int]]:
    tokens = []
    pos = 0
    length = len(expr)
    while pos < length:
        if expr[pos:].strip() == "":
            break
        match = _TOKEN_PATTERN.match(expr, pos)
        if not match:
            raise CompileError(f"unexpected text at position {pos}", expr, pos)
        kind = match.lastgroup
        text = match.group(kind)
        start = match.start(kind)
        if kind == "junk":
            raise CompileError(f"unexpected character '{text}' at position {start}", expr, start)
        tokens.append((kind, text, start))
        pos = match.end()
    return tokens


def _parse_number(text: str, expr: str, position: int) -> float:
    literal = text[:-1] if text.endswith("%") else text
    try:
        return float(literal)
    except ValueError:
        raise CompileError(f"malformed number '{text}'", expr, position)


def compile_trigger(expr: Optional[str]) -> TriggerAST:
    """
    Compile a trigger string into a TriggerAST.

    Args:
        expr: Trigger text. None, "" and whitespace compile to ALWAYS_TRUE.

    Returns:
        TriggerAST ready for evaluate()

    Raises:
        CompileError: Unknown variable, bad operator/number, or malformed
            combinator chain
    """
    if expr is None or not str(expr).strip():
        return ALWAYS_TRUE

    expr = str(expr)
    tokens = _tokenize(expr)
    clauses: List[Comparison] = []
    combinators: List[str] = []
    index = 0

    while True:
        # --- comparison ---
        if index + 3 > len(tokens):
            position = tokens[index][2] if index < len(tokens) else len(expr)
            raise CompileError("incomplete comparison, expected 'variable op number'",
                               expr, position)

        kind, text, position = tokens[index]
        if kind != "word":
            raise CompileError(f"expected variable name at position {position}, got '{text}'",
                               expr, position)
        variable = text.lower()
        if variable not in TRIGGER_VARIABLES:
            raise CompileError(
                f"unknown variable '{text}'. Available: {', '.join(TRIGGER_VARIABLES)}",
                expr, position)

        kind, text, position = tokens[index + 1]
        if kind != "operator":
            raise CompileError(f"expected comparison operator after '{variable}', got '{text}'",
                               expr, position)
        op = text

        kind, text, position = tokens[index + 2]
        if kind != "number":
            raise CompileError(f"malformed number '{text}'", expr, position)
        value = _parse_number(text, expr, position)

        clauses.append(Comparison(variable=variable, op=op, value=value))
        index += 3

        if index >= len(tokens):
            break

        # --- combinator ---
        kind, text, position = tokens[index]
        if kind == "logic":
            combinator = _COMBINATOR_ALIASES[text]
        elif kind == "word" and text.upper() in COMBINATORS:
            combinator = text.upper()
        else:
            raise CompileError(f"expected AND/OR at position {position}, got '{text}'",
                               expr, position)
        combinators.append(combinator)
        index += 1

        if index >= len(tokens):
            raise CompileError(f"dangling {combinator} at end of trigger", expr, position)

    return TriggerAST(clauses=tuple(clauses), combinators=tuple(combinators), source=expr)


def try_compile(expr: Optional[str]) -> Tuple[Optional[TriggerAST], Optional[str]]:
    """compile_trigger() that returns (ast, None) or (None, error_message)."""
    try:
        return compile_trigger(expr), None
    except CompileError as e:
        return None, e.message


# ════════════════════════════════════════════════════════════════════════════════
# EVALUATE
# ════════════════════════════════════════════════════════════════════════════════

def _resolve(context: ExecutionContext, variable: str) -> Optional[float]:
    if isinstance(context, Mapping):
        return context.get(variable)
    return context(variable)


def evaluate(ast: TriggerAST, context: ExecutionContext) -> bool:
    """
    Evaluate a compiled trigger against live state.

    Every clause re-reads its variable from `context` on every call (no
    short-circuit, no caching), so two calls a tick apart can disagree.
    A variable the context cannot resolve (None) makes its clause false.
    """
    if ast.always_true:
        return True

    result = ast.clauses[0].evaluate(context)
    for combinator, clause in zip(ast.combinators, ast.clauses[1:]):
        value = clause.evaluate(context)
        if combinator == "AND":
            result = result and value
        else:
            result = result or value
    return result
