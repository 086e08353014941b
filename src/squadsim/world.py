"""esper world management and shared entity lookups.

esper keeps entity storage in module state, one context per world name. Each
simulation run owns a uniquely named world and switches to it before doing
any work, so runs never see each other's entities.
"""
from __future__ import annotations

import itertools
import logging
from typing import Iterable, Tuple

import esper

from squadsim.components.battle_state import BattleState
from squadsim.components.burst_cooldown import BurstCooldown
from squadsim.components.character import Character
from squadsim.components.combat_state import CombatState
from squadsim.effects.definitions import CharacterDefinition

logger = logging.getLogger(__name__)

DEFAULT_WORLD = "default"

_world_ids = itertools.count(1)
_active_world = DEFAULT_WORLD


def create_world(name: str | None = None) -> str:
    """Switch to a fresh, empty world and return its name."""
    name = name or f"squadsim-{next(_world_ids)}"
    activate_world(name)
    esper.clear_database()
    logger.debug("Created world %s", name)
    return name


def activate_world(name: str) -> None:
    global _active_world
    if _active_world != name:
        esper.switch_world(name)
        _active_world = name


def release_world(name: str) -> None:
    """Delete a world created by ``create_world``."""
    if name == DEFAULT_WORLD:
        activate_world(DEFAULT_WORLD)
        esper.clear_database()
        return
    activate_world(DEFAULT_WORLD)
    try:
        esper.delete_world(name)
    except KeyError:
        logger.debug("World %s was never populated", name)


def spawn_member(definition: CharacterDefinition, slot: int, max_ammo: int) -> int:
    return esper.create_entity(
        Character(character_id=definition.id, definition=definition, slot=slot),
        CombatState(current_ammo=max_ammo, max_ammo=max_ammo),
        BurstCooldown(),
    )


def find_member(character_id: str) -> int | None:
    for entity, character in esper.get_component(Character):
        if character.character_id == character_id:
            return entity
    return None


def member_components(character_id: str) -> Tuple[int, Character, CombatState] | None:
    entity = find_member(character_id)
    if entity is None:
        return None
    try:
        character = esper.component_for_entity(entity, Character)
        state = esper.component_for_entity(entity, CombatState)
    except KeyError:
        return None
    return entity, character, state


def iter_members() -> Iterable[Tuple[int, Character]]:
    return sorted(esper.get_component(Character), key=lambda item: item[1].slot)


def battle_state() -> BattleState | None:
    for _entity, state in esper.get_component(BattleState):
        return state
    return None
