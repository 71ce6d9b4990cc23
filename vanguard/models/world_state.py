"""
World State for Project Vanguard
The live game state the command pipeline reads and mutates.

Tracks:
- All units (player AND enemy), keyed by unit_id
- World clock in milliseconds (advanced by the tick loop)
- Team rally points (default retreat destinations)
- Recent command history (fed back into generator prompts)

Provides:
- Proximity queries (nearest ally/enemy, counts within sensor range)
- snapshot() for prompt building
- build_execution_context() for trigger evaluation
"""

import math
from collections import deque
from typing import Callable, Dict, List, Optional

from vanguard.models.unit import Unit, Position, distance, create_starting_units, create_enemy_units

# Units further away than this are not counted by enemy_count/ally_count
DEFAULT_SENSOR_RANGE = 60.0

# How many past commands to keep for prompt context
COMMAND_HISTORY_SIZE = 10


class WorldState:
    """
    The complete sandbox state.

    The pipeline treats this as an external collaborator: the engine and
    translator only read it through get_unit(), the proximity queries and
    the unit capability interface.
    """

    def __init__(self, player_team: str = "blue", sensor_range: float = DEFAULT_SENSOR_RANGE):
        self.player_team = player_team
        self.sensor_range = sensor_range
        self.units: Dict[str, Unit] = {}
        self.time_ms: int = 0
        self.tick_count: int = 0
        self.rally_points: Dict[str, Position] = {}
        self._command_history: deque = deque(maxlen=COMMAND_HISTORY_SIZE)

    # ══════════════════════════════════════════════════════════════════════════
    # UNITS
    # ══════════════════════════════════════════════════════════════════════════

    def add_unit(self, unit: Unit) -> Unit:
        if unit.unit_id in self.units:
            raise ValueError(f"Duplicate unit id: {unit.unit_id}")
        self.units[unit.unit_id] = unit
        return unit

    def remove_unit(self, unit_id: str) -> Optional[Unit]:
        return self.units.pop(unit_id, None)

    def get_unit(self, unit_id: str) -> Optional[Unit]:
        return self.units.get(unit_id)

    def living_units(self) -> List[Unit]:
        return [u for u in self.units.values() if not u.is_dead()]

    def get_player_units(self) -> List[Unit]:
        return [u for u in self.units.values() if u.team == self.player_team]

    def get_enemy_units(self) -> List[Unit]:
        return [u for u in self.units.values() if u.team != self.player_team]

    def allies_of(self, unit: Unit) -> List[Unit]:
        return [u for u in self.living_units()
                if u.team == unit.team and u.unit_id != unit.unit_id]

    def enemies_of(self, unit: Unit) -> List[Unit]:
        return [u for u in self.living_units() if u.team != unit.team]

    def set_rally_point(self, team: str, pos: Position) -> None:
        self.rally_points[team] = (float(pos[0]), float(pos[1]))

    def get_rally_point(self, team: str) -> Optional[Position]:
        return self.rally_points.get(team)

    # ══════════════════════════════════════════════════════════════════════════
    # PROXIMITY
    # ══════════════════════════════════════════════════════════════════════════

    def nearest_enemy(self, unit: Unit) -> Optional[Unit]:
        enemies = self.enemies_of(unit)
        if not enemies:
            return None
        return min(enemies, key=lambda e: distance(unit.position, e.position))

    def nearest_enemy_distance(self, unit: Unit) -> float:
        enemy = self.nearest_enemy(unit)
        if enemy is None:
            return math.inf
        return distance(unit.position, enemy.position)

    def nearest_ally_distance(self, unit: Unit) -> float:
        allies = self.allies_of(unit)
        if not allies:
            return math.inf
        return min(distance(unit.position, a.position) for a in allies)

    def count_enemies_in_range(self, unit: Unit) -> int:
        return sum(1 for e in self.enemies_of(unit)
                   if distance(unit.position, e.position) <= self.sensor_range)

    def count_allies_in_range(self, unit: Unit) -> int:
        return sum(1 for a in self.allies_of(unit)
                   if distance(unit.position, a.position) <= self.sensor_range)

    # ══════════════════════════════════════════════════════════════════════════
    # TRIGGER CONTEXT
    # ══════════════════════════════════════════════════════════════════════════

    def build_execution_context(self, unit_id: str,
                                plan_started_ms: int = 0) -> Callable[[str], Optional[float]]:
        """
        Build the variable resolver for one plan's trigger evaluation.

        The returned function looks the unit up and re-reads world state on
        EVERY call. Nothing is captured except the unit id and plan start.
        A missing unit resolves every variable to None.
        """
        def resolve(variable: str) -> Optional[float]:
            unit = self.get_unit(unit_id)
            if unit is None:
                return None
            if variable == "health_pct":
                return unit.get_health_percentage()
            if variable == "enemy_dist":
                return self.nearest_enemy_distance(unit)
            if variable == "ally_dist":
                return self.nearest_ally_distance(unit)
            if variable == "time":
                return max(0, self.time_ms - plan_started_ms) / 1000.0
            if variable == "enemy_count":
                return float(self.count_enemies_in_range(unit))
            if variable == "ally_count":
                return float(self.count_allies_in_range(unit))
            return None

        return resolve

    # ══════════════════════════════════════════════════════════════════════════
    # TIME
    # ══════════════════════════════════════════════════════════════════════════

    def advance(self, delta_ms: int) -> None:
        """Advance the world clock and simulate every unit."""
        self.time_ms += int(delta_ms)
        self.tick_count += 1
        for unit in list(self.units.values()):
            unit.update(delta_ms, self)

    # ══════════════════════════════════════════════════════════════════════════
    # PROMPT CONTEXT
    # ══════════════════════════════════════════════════════════════════════════

    def record_command(self, text: str, unit_ids: List[str]) -> None:
        self._command_history.append({
            "time_ms": self.time_ms,
            "units": list(unit_ids),
            "text": text,
        })

    def get_command_history_for_prompt(self) -> List[Dict]:
        return list(self._command_history)

    def snapshot(self) -> Dict:
        """
        Plain-dict view of the world for prompt building.

        Taken at submission time; the generator reasons about this frozen
        picture while the live world keeps moving.
        """
        return {
            "time_ms": int(self.time_ms),
            "player_team": self.player_team,
            "units": {u.unit_id: u.to_dict() for u in self.get_player_units()
                      if not u.is_dead()},
            "enemies": {u.unit_id: u.to_dict() for u in self.get_enemy_units()
                        if not u.is_dead()},
            "rally_points": {team: list(pos) for team, pos in self.rally_points.items()},
        }

    def to_dict(self) -> Dict:
        return {
            "time_ms": int(self.time_ms),
            "tick": int(self.tick_count),
            "player_team": self.player_team,
            "units": {uid: u.to_dict() for uid, u in self.units.items()},
            "rally_points": {team: list(pos) for team, pos in self.rally_points.items()},
        }


def create_default_world() -> WorldState:
    """Sandbox world: the blue squad against a red raiding party."""
    world = WorldState(player_team="blue")
    for unit in create_starting_units().values():
        world.add_unit(unit)
    for unit in create_enemy_units().values():
        world.add_unit(unit)
    world.set_rally_point("blue", (0.0, 0.0))
    world.set_rally_point("red", (100.0, 100.0))
    return world
