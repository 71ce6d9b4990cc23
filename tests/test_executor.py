"""
Tests for the command translator.

Tests cover:
1. One capability call per action kind
2. Target resolution (nearest aliases, typo-tolerant unit ids)
3. Direct commands emitting command_executed / command_failed
4. Plan-step dispatch raising ActionExecutionError

Run with: pytest tests/test_executor.py -v
"""

import pytest

from vanguard.commands.executor import CommandTranslator
from vanguard.errors import ActionExecutionError
from vanguard.models.plan import ActionDescriptor
from vanguard.models.unit import ActionKind, Unit
from vanguard.models.world_state import WorldState
from vanguard.utils.events import EventLog, EventType
from vanguard.utils.fuzzy_matcher import AUTO_CORRECT, EXACT, NO_MATCH, SUGGEST, FuzzyMatcher


@pytest.fixture
def world():
    world = WorldState(player_team="blue")
    world.add_unit(Unit("alpha", "soldier", "blue", position=(0, 0)))
    world.add_unit(Unit("echo", "scout", "blue", position=(5, 0)))
    world.add_unit(Unit("doc", "medic", "blue", position=(0, 5)))
    world.add_unit(Unit("raider_1", "soldier", "red", position=(20, 0)))
    world.add_unit(Unit("brute", "heavy", "red", position=(60, 0)))
    world.set_rally_point("blue", (-20, -20))
    return world


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def translator(world, events):
    return CommandTranslator(world, events)


def descriptor(kind, unit_id=None, speech="", **params):
    return ActionDescriptor(kind=kind, params=params, speech=speech, unit_id=unit_id)


# ════════════════════════════════════════════════════════════════════════════════
# DISPATCH (one capability call per action)
# ════════════════════════════════════════════════════════════════════════════════

class TestDispatch:

    def test_move_to_position(self, world, translator):
        alpha = world.get_unit("alpha")
        result = translator.dispatch(alpha, descriptor(ActionKind.MOVE, position=(10.0, 2.0)))
        assert alpha.destination == (10.0, 2.0)
        assert result == {"destination": [10.0, 2.0], "unit_id": "alpha", "action": "move"}

    def test_move_to_unit(self, world, translator):
        alpha = world.get_unit("alpha")
        translator.dispatch(alpha, descriptor(ActionKind.MOVE, target="doc"))
        assert alpha.destination == (0.0, 5.0)

    def test_attack_named_target(self, world, translator):
        alpha = world.get_unit("alpha")
        result = translator.dispatch(alpha, descriptor(ActionKind.ATTACK, target="brute"))
        assert alpha.attack_target_id == "brute"
        assert result["target"] == "brute"

    @pytest.mark.parametrize("alias", ["nearest", "closest", "Enemy", "nearest_enemy"])
    def test_attack_nearest(self, world, translator, alias):
        alpha = world.get_unit("alpha")
        translator.dispatch(alpha, descriptor(ActionKind.ATTACK, target=alias))
        assert alpha.attack_target_id == "raider_1"

    def test_attack_without_target_means_nearest(self, world, translator):
        alpha = world.get_unit("alpha")
        translator.dispatch(alpha, descriptor(ActionKind.ATTACK))
        assert alpha.attack_target_id == "raider_1"

    def test_attack_typo_auto_corrects(self, world, translator):
        alpha = world.get_unit("alpha")
        translator.dispatch(alpha, descriptor(ActionKind.ATTACK, target="raider1"))
        assert alpha.attack_target_id == "raider_1"

    def test_attack_unknown_target(self, world, translator):
        with pytest.raises(ActionExecutionError, match="target 'zzzzqq' not found"):
            translator.dispatch(world.get_unit("alpha"), descriptor(ActionKind.ATTACK, target="zzzzqq"))

    def test_attack_with_no_enemies_left(self, world, translator):
        for unit in world.get_enemy_units():
            unit.take_damage(1000)
        with pytest.raises(ActionExecutionError, match="no enemies in sight"):
            translator.dispatch(world.get_unit("alpha"), descriptor(ActionKind.ATTACK))

    def test_retreat_to_rally_point(self, world, translator):
        alpha = world.get_unit("alpha")
        result = translator.dispatch(alpha, descriptor(ActionKind.RETREAT))
        assert alpha.destination == (-20.0, -20.0)
        assert alpha.retreating
        assert result["destination"] == [-20.0, -20.0]

    def test_retreat_to_position(self, world, translator):
        alpha = world.get_unit("alpha")
        translator.dispatch(alpha, descriptor(ActionKind.RETREAT, position=(1.0, 1.0)))
        assert alpha.destination == (1.0, 1.0)

    def test_retreat_without_rally_point(self, world, translator):
        world.rally_points.clear()
        with pytest.raises(ActionExecutionError, match="no rally point for team blue"):
            translator.dispatch(world.get_unit("alpha"), descriptor(ActionKind.RETREAT))

    def test_patrol(self, world, translator):
        echo = world.get_unit("echo")
        result = translator.dispatch(echo, descriptor(ActionKind.PATROL, waypoints=[(1.0, 1.0), (9.0, 9.0)]))
        assert echo.patrol_route == [(1.0, 1.0), (9.0, 9.0)]
        assert result["waypoints"] == [[1.0, 1.0], [9.0, 9.0]]

    def test_hold(self, world, translator):
        alpha = world.get_unit("alpha")
        alpha.move_to((50, 50))
        translator.dispatch(alpha, descriptor(ActionKind.HOLD))
        assert alpha.stance == "hold"
        assert alpha.destination is None

    def test_set_stance(self, world, translator):
        alpha = world.get_unit("alpha")
        result = translator.dispatch(alpha, descriptor(ActionKind.SET_STANCE, stance="aggressive"))
        assert result["stance"] == "aggressive"

    def test_use_ability(self, world, translator):
        alpha = world.get_unit("alpha")
        result = translator.dispatch(alpha, descriptor(ActionKind.USE_ABILITY, ability="grenade"))
        assert result["ability"] == "grenade"

    def test_heal(self, world, translator):
        doc = world.get_unit("doc")
        doc.health = 10
        result = translator.dispatch(doc, descriptor(ActionKind.HEAL))
        assert doc.health > 10
        assert result["ability"] == "heal"

    def test_stealth(self, world, translator):
        echo = world.get_unit("echo")
        translator.dispatch(echo, descriptor(ActionKind.STEALTH))
        assert echo.stealthed

    def test_wait_does_nothing(self, world, translator):
        alpha = world.get_unit("alpha")
        alpha.move_to((5, 5))
        action = ActionDescriptor(kind=ActionKind.WAIT, duration_ms=2000)
        result = translator.dispatch(alpha, action)
        assert result["duration_ms"] == 2000
        assert alpha.destination == (5.0, 5.0)

    def test_speech_included(self, world, translator):
        result = translator.dispatch(world.get_unit("alpha"), descriptor(ActionKind.HOLD, speech="Holding!"))
        assert result["speech"] == "Holding!"

    @pytest.mark.parametrize("kind", list(ActionKind))
    def test_dead_unit_fails_every_action(self, world, translator, kind):
        alpha = world.get_unit("alpha")
        alpha.take_damage(1000)
        params = {"position": (1.0, 1.0), "target": "raider_1", "waypoints": [(1.0, 1.0)],
                  "stance": "hold", "ability": "grenade"}
        with pytest.raises(ActionExecutionError):
            translator.dispatch(alpha, ActionDescriptor(kind=kind, params=params))


# ════════════════════════════════════════════════════════════════════════════════
# DIRECT COMMANDS
# ════════════════════════════════════════════════════════════════════════════════

class TestExecuteCommand:

    def test_success_emits_command_executed(self, world, events, translator):
        command_id = translator.execute_command(descriptor(ActionKind.HOLD, unit_id="alpha"))
        assert command_id == "cmd-1"
        executed = events.history(EventType.COMMAND_EXECUTED)
        assert len(executed) == 1
        assert executed[0].data["command_id"] == "cmd-1"
        assert executed[0].data["result"]["stance"] == "hold"

    def test_command_ids_increase(self, translator):
        first = translator.execute_command(descriptor(ActionKind.HOLD, unit_id="alpha"))
        second = translator.execute_command(descriptor(ActionKind.HOLD, unit_id="echo"))
        assert (first, second) == ("cmd-1", "cmd-2")

    def test_unit_id_argument_overrides(self, world, translator):
        translator.execute_command(descriptor(ActionKind.HOLD), unit_id="echo")
        assert world.get_unit("echo").stance == "hold"

    def test_dead_unit_emits_command_failed(self, world, events, translator):
        world.get_unit("alpha").take_damage(1000)
        command_id = translator.execute_command(descriptor(ActionKind.HOLD, unit_id="alpha"))
        failed = events.history(EventType.COMMAND_FAILED)
        assert len(failed) == 1
        assert failed[0].data == {
            "command_id": command_id,
            "unit_id": "alpha",
            "action": "hold",
            "error": "alpha is destroyed",
        }
        assert events.count(EventType.COMMAND_EXECUTED) == 0

    def test_unknown_unit_emits_command_failed(self, events, translator):
        translator.execute_command(descriptor(ActionKind.HOLD, unit_id="ghost"))
        failed = events.history(EventType.COMMAND_FAILED)
        assert failed[0].data["error"] == "unknown unit: ghost"


# ════════════════════════════════════════════════════════════════════════════════
# FUZZY MATCHER
# ════════════════════════════════════════════════════════════════════════════════

class TestFuzzyMatcher:

    @pytest.fixture
    def matcher(self):
        return FuzzyMatcher()

    def test_exact_ignores_case_and_separators(self, matcher):
        result = matcher.resolve("Raider-1", ["raider_1", "brute"])
        assert result.outcome == EXACT
        assert result.match == "raider_1"
        assert result.score == 100

    def test_auto_correct(self, matcher):
        result = matcher.resolve("brutee", ["raider_1", "brute"])
        assert result.outcome == AUTO_CORRECT
        assert result.match == "brute"
        assert result.accepted

    def test_no_match_lists_known(self, matcher):
        result = matcher.resolve("zzzzqq", ["raider_1", "brute"])
        assert result.outcome == NO_MATCH
        assert not result.accepted
        assert set(result.suggestions) == {"raider_1", "brute"}
        assert result.describe("target").startswith("target 'zzzzqq' not found. Known:")

    def test_single_letter_never_guesses(self, matcher):
        result = matcher.resolve("b", ["brute", "bravo"])
        assert not result.accepted

    def test_suggestion_is_not_accepted(self, matcher):
        result = matcher.resolve("alphabet", ["alpha"])
        assert result.outcome in (SUGGEST, NO_MATCH, AUTO_CORRECT)
        if result.outcome == SUGGEST:
            assert "Did you mean 'alpha'?" in result.describe()

    def test_empty_inputs(self, matcher):
        assert matcher.resolve("", ["alpha"]).outcome == NO_MATCH
        assert matcher.resolve("alpha", []).outcome == NO_MATCH
