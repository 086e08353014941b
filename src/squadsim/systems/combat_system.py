from __future__ import annotations

import logging
import math
import random
from typing import Any, Dict, Mapping

import esper

from squadsim.combat_log import LOG_BUFF, LOG_CRIT, LOG_DAMAGE, LOG_RELOAD, LOG_SKILL, LOG_SYSTEM, CombatLog
from squadsim.components.burst_cooldown import BurstCooldown
from squadsim.components.combat_state import CombatState, ReplaceAttack
from squadsim.constants import (
    BURST_CYCLE_TIME,
    BURST_FIRST_READY,
    BURST_POSITIONS,
    BURST_STAGGER,
    DEFAULT_BUFF_TOTALS,
    ENEMY_TARGET_ID,
    FULL_BURST_DURATION,
)
from squadsim.damage import DamageSettings, collection_bonus, resolve_shot, resolve_skill_damage
from squadsim.effects.definitions import CharacterDefinition
from squadsim.events.bus import (
    EVENT_AMMO_CHANGE,
    EVENT_AMMO_CHARGE,
    EVENT_ATTACK,
    EVENT_BATTLE_START,
    EVENT_BUFF_DECREMENT_SHOT,
    EVENT_BURST_CHARGE,
    EVENT_BURST_COOLDOWN_REDUCE,
    EVENT_BURST_READY,
    EVENT_BURST_USE,
    EVENT_DAMAGE,
    EVENT_FULL_BURST,
    EVENT_FULL_BURST_END,
    EVENT_FULL_CHARGE,
    EVENT_HEAL,
    EVENT_LAST_BULLET,
    EVENT_RELOAD,
    EVENT_RELOAD_START,
    EVENT_REPLACE_ATTACK,
    EVENT_SHOT_FIRED,
    EVENT_SKILL_ACTIVATE,
    EventBus,
)
from squadsim.events.mediator import (
    REQUEST_CALCULATE_INSTANT_DAMAGE,
    REQUEST_GET_SQUAD_STATE,
    REQUEST_GET_TOTAL_BUFFS,
    Mediator,
)
from squadsim.scheduler import EventScheduler
from squadsim.world import battle_state, iter_members, member_components, spawn_member

logger = logging.getLogger(__name__)

PRIORITY_BATTLE_START = 0
PRIORITY_FULL_BURST_END = 0
PRIORITY_BURST = 1
PRIORITY_FULL_BURST = 2
PRIORITY_ATTACK = 5
PRIORITY_RELOAD_COMPLETE = 6
PRIORITY_RELOAD = 7

CHANGE_RELOAD = "reload"
CHANGE_CHARGE = "charge"


class CombatSystem:
    """Attack / reload / burst state machine for every squad member.

    Each member runs its own attack chain: attack, then either the next
    attack or a reload when the magazine is empty. A squad-wide burst cycle
    picks one eligible user per burst position and opens a full burst
    window when all three positions are filled.
    """

    def __init__(
        self,
        event_bus: EventBus,
        mediator: Mediator,
        scheduler: EventScheduler,
        settings: DamageSettings,
        rng: random.Random,
        combat_log: CombatLog | None = None,
    ):
        self.event_bus = event_bus
        self.mediator = mediator
        self.scheduler = scheduler
        self.settings = settings
        self.random = rng
        self.log = combat_log if combat_log is not None else CombatLog()
        self.event_bus.subscribe(EVENT_ATTACK, self.on_attack)
        self.event_bus.subscribe(EVENT_RELOAD, self.on_reload)
        self.event_bus.subscribe(EVENT_AMMO_CHANGE, self.on_ammo_change)
        self.event_bus.subscribe(EVENT_AMMO_CHARGE, self.on_ammo_charge)
        self.event_bus.subscribe(EVENT_BATTLE_START, self.on_battle_start)
        self.event_bus.subscribe(EVENT_BURST_READY, self.on_burst_ready)
        self.event_bus.subscribe(EVENT_BURST_USE, self.on_burst_use)
        self.event_bus.subscribe(EVENT_FULL_BURST, self.on_full_burst)
        self.event_bus.subscribe(EVENT_FULL_BURST_END, self.on_full_burst_end)
        self.event_bus.subscribe(EVENT_BURST_COOLDOWN_REDUCE, self.on_burst_cooldown_reduce)
        self.event_bus.subscribe(EVENT_BURST_CHARGE, self.on_burst_charge)
        self.event_bus.subscribe(EVENT_REPLACE_ATTACK, self.on_replace_attack)
        self.event_bus.subscribe(EVENT_HEAL, self.on_heal)
        self.event_bus.subscribe(EVENT_DAMAGE, self.on_damage)
        self.event_bus.subscribe(EVENT_SKILL_ACTIVATE, self.on_skill_activate)
        self.mediator.register_handler(REQUEST_CALCULATE_INSTANT_DAMAGE, self._handle_instant_damage)
        self.mediator.register_handler(REQUEST_GET_SQUAD_STATE, self._handle_squad_state)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def add_member(self, definition: CharacterDefinition, slot: int) -> int:
        entity = spawn_member(definition, slot, max_ammo=definition.base_stats.base_ammo)
        state = esper.component_for_entity(entity, CombatState)
        state.max_ammo = self.max_ammo(definition, self.buff_totals(definition.id))
        state.current_ammo = state.max_ammo
        battle = battle_state()
        if battle is not None and definition.id not in battle.members:
            battle.members.append(definition.id)
        return entity

    def start(self) -> None:
        """Schedule the opening events of a run."""
        self.scheduler.schedule(0.0, EVENT_BATTLE_START, {}, PRIORITY_BATTLE_START)
        for _entity, character in iter_members():
            interval = character.definition.base_stats.attack_interval
            self.scheduler.schedule(interval, EVENT_ATTACK, {"character_id": character.character_id}, PRIORITY_ATTACK)
        self.scheduler.schedule(BURST_FIRST_READY, EVENT_BURST_READY, {}, PRIORITY_BURST)

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    def buff_totals(self, character_id: str) -> Dict[str, float]:
        totals = dict(self.mediator.request_or(REQUEST_GET_TOTAL_BUFFS, {"character_id": character_id}, DEFAULT_BUFF_TOTALS))
        enemy = self.mediator.request_or(REQUEST_GET_TOTAL_BUFFS, {"character_id": ENEMY_TARGET_ID}, None)
        if enemy:
            totals["receivedDamage"] = totals.get("receivedDamage", 0.0) + enemy.get("receivedDamage", 0.0)
        return totals

    @staticmethod
    def max_ammo(definition: CharacterDefinition, buffs: Mapping[str, float]) -> int:
        bonus = collection_bonus(definition.weapon_class).get("maxAmmo", 0.0) + buffs.get("maxAmmo", 0.0)
        # Tolerance keeps exact products such as 100 * 1.65 from flooring one short.
        return max(1, math.floor(definition.base_stats.base_ammo * (1 + bonus) + 1e-9))

    # ------------------------------------------------------------------
    # Attack / reload
    # ------------------------------------------------------------------

    def on_battle_start(self, sender, **payload):
        time = payload.get("time", self.scheduler.now)
        battle = battle_state()
        members = ", ".join(battle.members) if battle is not None else ""
        self.log.add(time, f"Battle start: squad [{members}]", LOG_SYSTEM)
        self.log.add(
            time,
            f"Distance {self.settings.distance}, core size {self.settings.core_size}, "
            f"elite {'yes' if self.settings.elite else 'no'}, enemy DEF {self.settings.enemy_defense:g}",
            LOG_SYSTEM,
        )

    def on_attack(self, sender, **payload):
        character_id = payload.get("character_id")
        found = member_components(character_id) if character_id is not None else None
        if found is None:
            logger.debug("Dropping attack for %s: not in this run", character_id)
            return
        _entity, character, state = found
        now = payload.get("time", self.scheduler.now)
        if state.reloading:
            return
        if state.current_ammo <= 0:
            self.scheduler.schedule(now, EVENT_RELOAD, {"character_id": character_id}, PRIORITY_RELOAD)
            return

        definition = character.definition
        buffs = self.buff_totals(character_id)
        battle = battle_state()
        replace = state.replace_attack
        result = resolve_shot(
            definition,
            buffs,
            self.settings,
            self.random,
            full_burst=bool(battle is not None and battle.full_burst),
            pellets_override=replace.pellets_per_shot if replace is not None else None,
            penetration=True if replace is not None and replace.penetration else None,
        )

        state.shots_fired += 1
        state.total_damage += result.damage
        state.total_pellets += result.pellets
        state.core_hits += result.core_hits
        state.crit_hits += result.crits
        state.counters["attackCount"] = state.counters.get("attackCount", 0) + 1
        state.counters["pelletsHit"] = state.counters.get("pelletsHit", 0) + result.pellets
        if battle is not None:
            battle.counters["bulletsConsumed"] = battle.counters.get("bulletsConsumed", 0) + 1
        state.current_ammo -= 1
        if replace is not None:
            replace.shots_remaining -= 1
            if replace.shots_remaining <= 0:
                state.replace_attack = None

        kind = LOG_CRIT if result.crits else LOG_DAMAGE
        self.log.add(
            now,
            f"[{character_id}] shot {state.shots_fired}: {result.damage:,} "
            f"({result.core_hits}/{result.pellets} core, {result.crits} crit) ammo {state.current_ammo}/{state.max_ammo}",
            kind,
            level="debug",
        )
        self.event_bus.emit(
            EVENT_DAMAGE,
            character_id=character_id,
            damage=result.damage,
            kind="shot",
            pellets=result.pellets,
            crits=result.crits,
            core_hits=result.core_hits,
            time=now,
        )
        self.event_bus.emit(
            EVENT_SHOT_FIRED,
            character_id=character_id,
            damage=result.damage,
            pellets=result.pellets,
            crits=result.crits,
            core_hits=result.core_hits,
            ammo_left=state.current_ammo,
            time=now,
        )
        self.event_bus.emit(EVENT_BUFF_DECREMENT_SHOT, character_id=character_id)
        if state.current_ammo == 0:
            self.event_bus.emit(EVENT_LAST_BULLET, character_id=character_id, time=now)
        if result.charged:
            self.event_bus.emit(EVENT_FULL_CHARGE, character_id=character_id, time=now)

        if state.current_ammo > 0:
            interval = definition.base_stats.attack_interval / (1 + buffs.get("attackSpeed", 0.0))
            self.scheduler.schedule(now + interval, EVENT_ATTACK, {"character_id": character_id}, PRIORITY_ATTACK)
        else:
            self.scheduler.schedule(now, EVENT_RELOAD, {"character_id": character_id}, PRIORITY_RELOAD)

    def on_reload(self, sender, **payload):
        character_id = payload.get("character_id")
        found = member_components(character_id) if character_id is not None else None
        if found is None:
            return
        _entity, character, state = found
        if state.reloading:
            return
        now = payload.get("time", self.scheduler.now)
        buffs = self.buff_totals(character_id)
        reload_time = character.definition.base_stats.reload_time / (1 + buffs.get("reloadSpeed", 0.0))
        state.reloading = True
        state.reload_count += 1
        self.log.add(now, f"[{character_id}] reload started ({reload_time:.2f}s)", LOG_RELOAD)
        self.scheduler.schedule(
            now + reload_time,
            EVENT_AMMO_CHANGE,
            {"character_id": character_id, "change_type": CHANGE_RELOAD},
            PRIORITY_RELOAD_COMPLETE,
        )
        self.event_bus.emit(EVENT_RELOAD_START, character_id=character_id, reload_time=reload_time, time=now)

    def on_ammo_change(self, sender, **payload):
        if payload.get("change_type") != CHANGE_RELOAD:
            return
        character_id = payload.get("character_id")
        found = member_components(character_id) if character_id is not None else None
        if found is None:
            return
        _entity, character, state = found
        now = payload.get("time", self.scheduler.now)
        state.max_ammo = self.max_ammo(character.definition, self.buff_totals(character_id))
        state.current_ammo = state.max_ammo
        state.reloading = False
        self.log.add(now, f"[{character_id}] reload complete, ammo {state.current_ammo}/{state.max_ammo}", LOG_RELOAD)
        self.scheduler.schedule(now, EVENT_ATTACK, {"character_id": character_id}, PRIORITY_ATTACK)

    def on_ammo_charge(self, sender, **payload):
        target_id = payload.get("target_id")
        found = member_components(target_id) if target_id is not None else None
        if found is None:
            return
        _entity, _character, state = found
        amount = math.floor(state.max_ammo * float(payload.get("amount", 0.0)))
        before = state.current_ammo
        state.current_ammo = min(state.max_ammo, state.current_ammo + amount)
        if state.current_ammo != before:
            self.event_bus.emit(
                EVENT_AMMO_CHANGE,
                character_id=target_id,
                change_type=CHANGE_CHARGE,
                amount=state.current_ammo - before,
                time=payload.get("time", self.scheduler.now),
            )

    # ------------------------------------------------------------------
    # Burst cycle
    # ------------------------------------------------------------------

    def on_burst_ready(self, sender, **payload):
        now = payload.get("time", self.scheduler.now)
        battle = battle_state()
        if battle is None:
            return
        battle.burst_cycle += 1
        battle.burst_users = []
        chosen: list[tuple[str, int]] = []
        for position in BURST_POSITIONS:
            candidates = []
            for entity, character in iter_members():
                if character.definition.burst_position != position:
                    continue
                if any(character.character_id == user for user, _ in chosen):
                    continue
                cooldown = esper.component_for_entity(entity, BurstCooldown)
                if now + 1e-9 < cooldown.ready_at:
                    continue
                candidates.append((entity, character))
            if not candidates:
                continue
            selected = next(
                (item for item in candidates if item[1].character_id == battle.target_id),
                candidates[0],
            )
            entity, character = selected
            cooldown = esper.component_for_entity(entity, BurstCooldown)
            cooldown.ready_at = now + character.definition.burst_cooldown
            chosen.append((character.character_id, position))

        for index, (character_id, position) in enumerate(chosen):
            self.scheduler.schedule(
                now + index * BURST_STAGGER,
                EVENT_BURST_USE,
                {"character_id": character_id, "position": position},
                PRIORITY_BURST,
            )
        if len(chosen) == len(BURST_POSITIONS):
            self.scheduler.schedule(
                now + (len(chosen) - 1) * BURST_STAGGER,
                EVENT_FULL_BURST,
                {"users": [character_id for character_id, _ in chosen]},
                PRIORITY_FULL_BURST,
            )
        self.log.add(now, f"Burst cycle {battle.burst_cycle}: {len(chosen)} user(s)", LOG_SYSTEM)
        self.scheduler.schedule(now + BURST_CYCLE_TIME, EVENT_BURST_READY, {}, PRIORITY_BURST)

    def on_burst_use(self, sender, **payload):
        character_id = payload.get("character_id")
        found = member_components(character_id) if character_id is not None else None
        battle = battle_state()
        if found is None or battle is None:
            return
        entity = found[0]
        esper.component_for_entity(entity, BurstCooldown).uses += 1
        if character_id not in battle.burst_users:
            battle.burst_users.append(character_id)
        now = payload.get("time", self.scheduler.now)
        self.log.add(now, f"[{character_id}] burst {payload.get('position')} used", LOG_BUFF)

    def on_full_burst(self, sender, **payload):
        battle = battle_state()
        if battle is None:
            return
        now = payload.get("time", self.scheduler.now)
        battle.full_burst = True
        battle.full_burst_started_at = now
        battle.full_burst_count += 1
        self.scheduler.schedule(now + FULL_BURST_DURATION, EVENT_FULL_BURST_END, {}, PRIORITY_FULL_BURST_END)
        self.log.add(now, "Full burst!", LOG_BUFF)

    def on_full_burst_end(self, sender, **payload):
        battle = battle_state()
        if battle is None:
            return
        battle.full_burst = False
        battle.full_burst_started_at = None
        self.log.add(payload.get("time", self.scheduler.now), "Full burst ended", LOG_BUFF)

    def on_burst_cooldown_reduce(self, sender, **payload):
        amount = float(payload.get("amount", 0.0))
        now = payload.get("time", self.scheduler.now)
        targets = payload.get("targets")
        for entity, character in iter_members():
            if targets is not None and character.character_id not in targets:
                continue
            cooldown = esper.component_for_entity(entity, BurstCooldown)
            cooldown.ready_at = max(now, cooldown.ready_at - amount)

    def on_burst_charge(self, sender, **payload):
        battle = battle_state()
        if battle is not None:
            battle.burst_gauge += float(payload.get("amount", 0.0))

    # ------------------------------------------------------------------
    # Skill side effects
    # ------------------------------------------------------------------

    def on_replace_attack(self, sender, **payload):
        character_id = payload.get("character_id")
        found = member_components(character_id) if character_id is not None else None
        if found is None:
            return
        found[2].replace_attack = ReplaceAttack(
            shots_remaining=int(payload.get("shots", 1)),
            pellets_per_shot=payload.get("pellets_per_shot"),
            penetration=bool(payload.get("penetration", False)),
        )

    def on_heal(self, sender, **payload):
        target_id = payload.get("target_id")
        found = member_components(target_id) if target_id is not None else None
        if found is not None:
            found[2].heals_received += 1

    def on_damage(self, sender, **payload):
        if payload.get("kind") != "skill":
            return
        character_id = payload.get("character_id")
        found = member_components(character_id) if character_id is not None else None
        if found is None:
            return
        damage = int(payload.get("damage", 0))
        state = found[2]
        state.total_damage += damage
        state.skill_damage += damage
        self.log.add(payload.get("time", self.scheduler.now), f"[{character_id}] skill damage {damage:,}", LOG_SKILL)

    def on_skill_activate(self, sender, **payload):
        self.log.add(
            payload.get("time", self.scheduler.now),
            f"[{payload.get('character_id')}] {payload.get('skill_id')} activated ({payload.get('trigger_id')})",
            LOG_SKILL,
        )

    def _handle_instant_damage(self, data: Mapping[str, Any]):
        character_id = data.get("character_id")
        found = member_components(character_id) if character_id is not None else None
        if found is None:
            return None
        battle = battle_state()
        return resolve_skill_damage(
            found[1].definition,
            float(data.get("multiplier", 0.0)),
            self.buff_totals(character_id),
            self.settings,
            full_burst=bool(battle is not None and battle.full_burst),
        )

    def _handle_squad_state(self, data: Mapping[str, Any]):
        battle = battle_state()
        if battle is None:
            return None
        max_ammo = {}
        for _entity, character in iter_members():
            found = member_components(character.character_id)
            if found is not None:
                max_ammo[character.character_id] = found[2].max_ammo
        return {
            "members": list(battle.members),
            "burst_users": list(battle.burst_users),
            "full_burst": battle.full_burst,
            "full_burst_count": battle.full_burst_count,
            "burst_gauge": battle.burst_gauge,
            "max_ammo": max_ammo,
        }
