"""
Unit Model for Project Vanguard
Represents a controllable unit and the capability interface the command
pipeline drives.

CAPABILITY INTERFACE (what the translator is allowed to call):
- move_to(pos)
- attack_target(target)
- use_ability(name)
- patrol(waypoints)
- retreat(pos)
- set_stance(name)
- get_health_percentage() / get_position() / is_dead()

Capability calls either succeed (return None) or raise
ActionExecutionError with a readable reason. They only record intent
(destination, target, stance); update() turns intent into movement and
damage on each world tick.

ARCHETYPES:
Each archetype has an allow-list of action kinds. The validator rejects
anything outside the requesting unit's list (e.g. only scouts can use
"stealth", only medics can "heal").
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from vanguard.errors import ActionExecutionError

Position = Tuple[float, float]


# ════════════════════════════════════════════════════════════════════════════════
# ACTION KINDS & ARCHETYPES
# ════════════════════════════════════════════════════════════════════════════════

class ActionKind(Enum):
    """Every atomic action a unit can be ordered to perform."""
    MOVE = "move"
    ATTACK = "attack"
    RETREAT = "retreat"
    PATROL = "patrol"
    HOLD = "hold"
    SET_STANCE = "set_stance"
    USE_ABILITY = "use_ability"
    HEAL = "heal"
    STEALTH = "stealth"
    WAIT = "wait"

    @classmethod
    def from_name(cls, name: str) -> Optional["ActionKind"]:
        """Look up by wire name ("move", "attack", ...). None if unknown."""
        if not isinstance(name, str):
            return None
        try:
            return cls(name.strip().lower())
        except ValueError:
            return None


ALL_ACTION_NAMES: List[str] = [kind.value for kind in ActionKind]

_COMMON_ACTIONS = [
    ActionKind.MOVE, ActionKind.RETREAT, ActionKind.PATROL, ActionKind.HOLD,
    ActionKind.SET_STANCE, ActionKind.USE_ABILITY, ActionKind.WAIT,
]

# Per-archetype allow-lists. Order is preserved into the JSON schema enum.
ARCHETYPE_ACTIONS: Dict[str, List[ActionKind]] = {
    "soldier": _COMMON_ACTIONS + [ActionKind.ATTACK],
    "heavy": _COMMON_ACTIONS + [ActionKind.ATTACK],
    "scout": _COMMON_ACTIONS + [ActionKind.ATTACK, ActionKind.STEALTH],
    "medic": _COMMON_ACTIONS + [ActionKind.HEAL],
}

# Named abilities usable through use_ability(name)
ARCHETYPE_ABILITIES: Dict[str, List[str]] = {
    "soldier": ["grenade", "sprint"],
    "heavy": ["suppress", "fortify"],
    "scout": ["stealth", "sprint", "flare"],
    "medic": ["heal", "smoke"],
}

# Base stats per archetype: max_health, speed (units/s), attack_range, damage/s
ARCHETYPE_STATS: Dict[str, Dict[str, float]] = {
    "soldier": {"max_health": 100, "speed": 4.0, "attack_range": 25.0, "damage": 10.0},
    "heavy": {"max_health": 180, "speed": 2.5, "attack_range": 30.0, "damage": 16.0},
    "scout": {"max_health": 70, "speed": 6.0, "attack_range": 20.0, "damage": 7.0},
    "medic": {"max_health": 80, "speed": 4.0, "attack_range": 0.0, "damage": 0.0},
}

VALID_STANCES = {"neutral", "aggressive", "defensive", "hold"}

# Fraction of max health restored by one heal
HEAL_FRACTION = 0.35


def allowed_actions(archetype: Optional[str]) -> List[str]:
    """
    Action names allowed for an archetype.

    None means "any archetype": the union of every allow-list.
    Unknown archetypes get an empty list.
    """
    if archetype is None:
        union: List[str] = []
        for kinds in ARCHETYPE_ACTIONS.values():
            for kind in kinds:
                if kind.value not in union:
                    union.append(kind.value)
        return union
    return [kind.value for kind in ARCHETYPE_ACTIONS.get(archetype, [])]


def distance(a: Position, b: Position) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


# ════════════════════════════════════════════════════════════════════════════════
# UNIT
# ════════════════════════════════════════════════════════════════════════════════

@dataclass
class Unit:
    """
    A controllable unit.

    Attributes:
        unit_id: Unique id, also the name players and the generator use
        archetype: "soldier", "heavy", "scout" or "medic"
        team: Team name; units on the same team are allies
        position: (x, y) world position
        health: Current health (0 = dead)
        max_health: Health ceiling
        stance: One of VALID_STANCES
        destination: Where the unit is moving, if anywhere
        attack_target_id: Unit being attacked, if any
        patrol_route: Waypoints cycled while patrolling
        stealthed: Scout stealth active
        last_ability: Most recent ability used
    """
    unit_id: str
    archetype: str
    team: str
    position: Position = (0.0, 0.0)
    health: float = 0.0
    max_health: float = 0.0
    stance: str = "neutral"
    speed: float = 0.0
    attack_range: float = 0.0
    damage: float = 0.0
    abilities: List[str] = field(default_factory=list)

    destination: Optional[Position] = None
    attack_target_id: Optional[str] = None
    patrol_route: List[Position] = field(default_factory=list)
    patrol_index: int = 0
    retreating: bool = False
    stealthed: bool = False
    last_ability: Optional[str] = None

    def __post_init__(self):
        stats = ARCHETYPE_STATS.get(self.archetype)
        if stats is None:
            raise ValueError(f"Unknown archetype: {self.archetype}. "
                             f"Available: {', '.join(ARCHETYPE_STATS)}")
        if not self.max_health:
            self.max_health = stats["max_health"]
        if not self.health:
            self.health = self.max_health
        if not self.speed:
            self.speed = stats["speed"]
        if not self.attack_range:
            self.attack_range = stats["attack_range"]
        if not self.damage:
            self.damage = stats["damage"]
        if not self.abilities:
            self.abilities = list(ARCHETYPE_ABILITIES.get(self.archetype, []))
        self.position = (float(self.position[0]), float(self.position[1]))

    # ══════════════════════════════════════════════════════════════════════════
    # QUERIES
    # ══════════════════════════════════════════════════════════════════════════

    def get_health_percentage(self) -> float:
        if self.max_health <= 0:
            return 0.0
        return max(0.0, min(100.0, self.health / self.max_health * 100.0))

    def get_position(self) -> Position:
        return self.position

    def is_dead(self) -> bool:
        return self.health <= 0

    def _require_alive(self) -> None:
        if self.is_dead():
            raise ActionExecutionError(f"{self.unit_id} is destroyed", self.unit_id)

    # ══════════════════════════════════════════════════════════════════════════
    # CAPABILITIES
    # ══════════════════════════════════════════════════════════════════════════

    def move_to(self, pos: Position) -> None:
        self._require_alive()
        self.destination = (float(pos[0]), float(pos[1]))
        self.attack_target_id = None
        self.patrol_route = []
        self.retreating = False

    def attack_target(self, target: "Unit") -> None:
        self._require_alive()
        if target is None or target.is_dead():
            name = target.unit_id if target else "target"
            raise ActionExecutionError(f"{name} is already destroyed", self.unit_id)
        if target.team == self.team:
            raise ActionExecutionError(f"{target.unit_id} is an ally", self.unit_id)
        if self.damage <= 0:
            raise ActionExecutionError(f"{self.unit_id} cannot attack", self.unit_id)
        self.attack_target_id = target.unit_id
        self.patrol_route = []
        self.retreating = False
        self.stealthed = False

    def use_ability(self, name: str) -> None:
        self._require_alive()
        ability = (name or "").strip().lower()
        if ability not in self.abilities:
            raise ActionExecutionError(f"unknown ability: {name}", self.unit_id)

        if ability == "heal":
            self.health = min(self.max_health, self.health + self.max_health * HEAL_FRACTION)
        elif ability == "stealth":
            self.stealthed = True
        elif ability == "fortify":
            self.stance = "hold"
            self.destination = None
        self.last_ability = ability

    def patrol(self, waypoints: List[Position]) -> None:
        self._require_alive()
        if not waypoints:
            raise ActionExecutionError("patrol needs at least one waypoint", self.unit_id)
        self.patrol_route = [(float(p[0]), float(p[1])) for p in waypoints]
        self.patrol_index = 0
        self.destination = self.patrol_route[0]
        self.attack_target_id = None
        self.retreating = False

    def retreat(self, pos: Position) -> None:
        self._require_alive()
        self.destination = (float(pos[0]), float(pos[1]))
        self.attack_target_id = None
        self.patrol_route = []
        self.retreating = True
        self.stance = "defensive"

    def set_stance(self, name: str) -> None:
        self._require_alive()
        stance = (name or "").strip().lower()
        if stance not in VALID_STANCES:
            raise ActionExecutionError(
                f"unknown stance: {name}. Use: {', '.join(sorted(VALID_STANCES))}",
                self.unit_id)
        self.stance = stance
        if stance == "hold":
            self.destination = None
            self.patrol_route = []

    # ══════════════════════════════════════════════════════════════════════════
    # SIMULATION
    # ══════════════════════════════════════════════════════════════════════════

    def take_damage(self, amount: float) -> None:
        self.health = max(0.0, self.health - amount)
        if self.is_dead():
            self.destination = None
            self.attack_target_id = None
            self.patrol_route = []

    def update(self, delta_ms: float, world) -> None:
        """Advance movement and combat by delta_ms of world time."""
        if self.is_dead():
            return
        seconds = delta_ms / 1000.0

        if self.attack_target_id:
            target = world.get_unit(self.attack_target_id)
            if target is None or target.is_dead():
                self.attack_target_id = None
            elif distance(self.position, target.position) <= self.attack_range:
                target.take_damage(self.damage * seconds)
                return
            else:
                self._step_towards(target.position, seconds)
                return

        if self.destination is not None:
            arrived = self._step_towards(self.destination, seconds)
            if arrived:
                if self.patrol_route:
                    self.patrol_index = (self.patrol_index + 1) % len(self.patrol_route)
                    self.destination = self.patrol_route[self.patrol_index]
                else:
                    self.destination = None
                    self.retreating = False

    def _step_towards(self, goal: Position, seconds: float) -> bool:
        remaining = distance(self.position, goal)
        step = self.speed * seconds
        if remaining <= step or remaining == 0:
            self.position = (goal[0], goal[1])
            return True
        ratio = step / remaining
        self.position = (
            self.position[0] + (goal[0] - self.position[0]) * ratio,
            self.position[1] + (goal[1] - self.position[1]) * ratio,
        )
        return False

    # ══════════════════════════════════════════════════════════════════════════
    # SERIALIZATION
    # ══════════════════════════════════════════════════════════════════════════

    def to_dict(self) -> Dict:
        return {
            "unit_id": self.unit_id,
            "archetype": self.archetype,
            "team": self.team,
            "position": [round(self.position[0], 2), round(self.position[1], 2)],
            "health": round(self.health, 1),
            "max_health": self.max_health,
            "health_pct": round(self.get_health_percentage(), 1),
            "stance": self.stance,
            "abilities": list(self.abilities),
            "destination": list(self.destination) if self.destination else None,
            "attack_target": self.attack_target_id,
            "patrolling": bool(self.patrol_route),
            "retreating": self.retreating,
            "stealthed": self.stealthed,
            "dead": self.is_dead(),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Unit":
        position = data.get("position", (0.0, 0.0))
        return cls(
            unit_id=data["unit_id"],
            archetype=data["archetype"],
            team=data["team"],
            position=(position[0], position[1]),
            health=data.get("health", 0.0),
            max_health=data.get("max_health", 0.0),
            stance=data.get("stance", "neutral"),
        )

    def __repr__(self) -> str:
        return (f"Unit({self.unit_id}, {self.archetype}, team={self.team}, "
                f"pos=({self.position[0]:.1f}, {self.position[1]:.1f}), "
                f"hp={self.get_health_percentage():.0f}%)")


def create_starting_units() -> Dict[str, Unit]:
    """The default player squad."""
    units = [
        Unit("alpha", "soldier", "blue", position=(10.0, 10.0)),
        Unit("bravo", "heavy", "blue", position=(14.0, 8.0)),
        Unit("echo", "scout", "blue", position=(18.0, 14.0)),
        Unit("doc", "medic", "blue", position=(8.0, 6.0)),
    ]
    return {u.unit_id: u for u in units}


def create_enemy_units() -> Dict[str, Unit]:
    """The default opposing force."""
    units = [
        Unit("raider_1", "soldier", "red", position=(80.0, 80.0)),
        Unit("raider_2", "soldier", "red", position=(84.0, 76.0)),
        Unit("brute", "heavy", "red", position=(90.0, 90.0)),
    ]
    return {u.unit_id: u for u in units}
