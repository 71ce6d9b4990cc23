"""
Tests for trigger compilation and evaluation.

Tests cover:
1. Compiling valid triggers (operators, percent literals, aliases)
2. CompileError for unknown variables, bad numbers, dangling combinators
3. Strict left-to-right AND/OR evaluation (no precedence)
4. Live re-reading of variables on every evaluation

Run with: pytest tests/test_triggers.py -v
"""

import pytest

from vanguard.commands.triggers import (
    ALWAYS_TRUE, TRIGGER_VARIABLES, compile_trigger, evaluate, try_compile,
)
from vanguard.errors import CompileError


# ════════════════════════════════════════════════════════════════════════════════
# COMPILATION
# ════════════════════════════════════════════════════════════════════════════════

class TestCompile:
    """Valid triggers compile into the expected AST."""

    def test_single_comparison(self):
        ast = compile_trigger("health_pct < 20")
        assert len(ast.clauses) == 1
        clause = ast.clauses[0]
        assert clause.variable == "health_pct"
        assert clause.op == "<"
        assert clause.value == 20.0
        assert ast.combinators == ()

    @pytest.mark.parametrize("expr", [None, "", "   ", "\t"])
    def test_empty_trigger_is_always_true(self, expr):
        ast = compile_trigger(expr)
        assert ast is ALWAYS_TRUE
        assert ast.always_true
        assert evaluate(ast, {}) is True

    @pytest.mark.parametrize("op", ["<", ">", "<=", ">=", "==", "!="])
    def test_every_operator(self, op):
        ast = compile_trigger(f"enemy_dist {op} 15")
        assert ast.clauses[0].op == op

    @pytest.mark.parametrize("variable", TRIGGER_VARIABLES)
    def test_every_variable(self, variable):
        ast = compile_trigger(f"{variable} >= 1")
        assert ast.variables == [variable]

    def test_percent_literal(self):
        ast = compile_trigger("health_pct < 20%")
        assert ast.clauses[0].value == 20.0

    def test_decimal_and_negative_literals(self):
        ast = compile_trigger("time >= 2.5 OR enemy_dist > -1")
        assert ast.clauses[0].value == 2.5
        assert ast.clauses[1].value == -1.0

    def test_no_whitespace_needed(self):
        ast = compile_trigger("health_pct<50 or enemy_count>3")
        assert [c.variable for c in ast.clauses] == ["health_pct", "enemy_count"]
        assert ast.combinators == ("OR",)

    def test_case_insensitive_words(self):
        ast = compile_trigger("HEALTH_PCT < 20 and Enemy_Count > 2")
        assert [c.variable for c in ast.clauses] == ["health_pct", "enemy_count"]
        assert ast.combinators == ("AND",)

    def test_symbol_combinators(self):
        ast = compile_trigger("health_pct < 20 && enemy_dist < 10 || ally_count >= 2")
        assert ast.combinators == ("AND", "OR")

    def test_str_is_normalized(self):
        ast = compile_trigger("health_pct<20 and enemy_dist<=15.5")
        assert str(ast) == "health_pct < 20 AND enemy_dist <= 15.5"

    def test_variables_in_first_use_order(self):
        ast = compile_trigger("time > 1 AND health_pct < 50 OR time > 9")
        assert ast.variables == ["time", "health_pct"]


class TestCompileErrors:
    """Malformed triggers fail at compile time, never at evaluation."""

    @pytest.mark.parametrize("expr, fragment", [
        ("mana < 5", "unknown variable 'mana'"),
        ("health_pct < abc", "malformed number 'abc'"),
        ("health_pct < 20 AND", "dangling AND"),
        ("health_pct < 20 ||", "dangling OR"),
        ("health_pct 20", "incomplete comparison"),
        ("health_pct = 20", "unexpected character '='"),
        ("health_pct < 20 XOR enemy_dist < 5", "expected AND/OR"),
        ("< 20", "incomplete comparison"),
        ("20 < health_pct", "expected variable name"),
        ("health_pct # 5", "unexpected character '#'"),
    ])
    def test_compile_error(self, expr, fragment):
        with pytest.raises(CompileError) as exc_info:
            compile_trigger(expr)
        assert fragment in exc_info.value.message
        assert exc_info.value.expression == expr

    def test_error_carries_position(self):
        with pytest.raises(CompileError) as exc_info:
            compile_trigger("health_pct < 20 AND mana > 1")
        assert exc_info.value.position == 20

    def test_try_compile_returns_message(self):
        ast, error = try_compile("stamina > 3")
        assert ast is None
        assert "unknown variable" in error

    def test_try_compile_success(self):
        ast, error = try_compile("enemy_count > 3")
        assert error is None
        assert ast.clauses[0].variable == "enemy_count"


# ════════════════════════════════════════════════════════════════════════════════
# EVALUATION
# ════════════════════════════════════════════════════════════════════════════════

class TestEvaluate:
    """Evaluation against a live context."""

    def test_health_threshold(self):
        ast = compile_trigger("health_pct < 20")
        assert evaluate(ast, {"health_pct": 15}) is True
        assert evaluate(ast, {"health_pct": 25}) is False
        assert evaluate(ast, {"health_pct": 20}) is False

    @pytest.mark.parametrize("a, b, expected", [
        (True, True, True),
        (True, False, False),
        (False, True, False),
        (False, False, False),
    ])
    def test_and_table(self, a, b, expected):
        ast = compile_trigger("health_pct < 50 AND enemy_count > 2")
        context = {"health_pct": 10 if a else 90, "enemy_count": 5 if b else 0}
        assert evaluate(ast, context) is expected

    @pytest.mark.parametrize("a, b, expected", [
        (True, True, True),
        (True, False, True),
        (False, True, True),
        (False, False, False),
    ])
    def test_or_table(self, a, b, expected):
        ast = compile_trigger("health_pct < 50 OR enemy_count > 2")
        context = {"health_pct": 10 if a else 90, "enemy_count": 5 if b else 0}
        assert evaluate(ast, context) is expected

    def test_left_to_right_without_precedence(self):
        """A OR B AND C is (A OR B) AND C."""
        ast = compile_trigger("health_pct < 50 OR enemy_count > 2 AND time > 10")
        # A true, B false, C false: precedence would give True
        context = {"health_pct": 10, "enemy_count": 0, "time": 1}
        assert evaluate(ast, context) is False

    def test_left_to_right_and_then_or(self):
        """A AND B OR C is (A AND B) OR C."""
        ast = compile_trigger("health_pct < 50 AND enemy_count > 2 OR time > 10")
        context = {"health_pct": 90, "enemy_count": 0, "time": 11}
        assert evaluate(ast, context) is True

    def test_unresolved_variable_is_false(self):
        ast = compile_trigger("ally_dist < 5")
        assert evaluate(ast, {}) is False
        assert evaluate(ast, lambda name: None) is False

    def test_infinite_distance(self):
        ast = compile_trigger("enemy_dist < 30")
        assert evaluate(ast, {"enemy_dist": float("inf")}) is False

    def test_callable_context_is_reread(self):
        """Two evaluations of the same AST see fresh values."""
        state = {"health_pct": 80.0}
        calls = []

        def resolve(name):
            calls.append(name)
            return state.get(name)

        ast = compile_trigger("health_pct < 20")
        assert evaluate(ast, resolve) is False
        state["health_pct"] = 10.0
        assert evaluate(ast, resolve) is True
        assert calls == ["health_pct", "health_pct"]

    def test_every_clause_is_read(self):
        """No short-circuit: every clause reads its variable."""
        calls = []

        def resolve(name):
            calls.append(name)
            return 0.0

        ast = compile_trigger("health_pct > 50 AND enemy_count > 1 AND time > 2")
        assert evaluate(ast, resolve) is False
        assert calls == ["health_pct", "enemy_count", "time"]
