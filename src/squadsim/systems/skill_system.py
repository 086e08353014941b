from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, List

from squadsim.constants import ENEMY_TARGET_ID, MULTI_HIT_INTERVAL, STATE_CHECK_INTERVAL
from squadsim.effects.definitions import (
    DURATION_CONDITIONAL,
    SCOPE_GLOBAL,
    SCOPE_SELF,
    TARGET_ALL_ALLIES,
    TARGET_BURST_USERS,
    TARGET_ENEMY,
    TARGET_NON_BURST_USERS,
    TARGET_SELF,
    AccumulatorTrigger,
    AmmoChargeEffect,
    BuffEffect,
    BurstChargeEffect,
    BurstCooldownReductionEffect,
    CharacterDefinition,
    EventTrigger,
    HealEffect,
    InstantDamageEffect,
    MultiHitDamageEffect,
    PeriodicTrigger,
    ReplaceAttackEffect,
    SkillDefinition,
    StackEffect,
    StateTrigger,
    TransformBuffEffect,
)
from squadsim.events.bus import (
    EVENT_AMMO_CHARGE,
    EVENT_BATTLE_START,
    EVENT_BUFF_APPLY,
    EVENT_BUFF_REMOVE,
    EVENT_BUFF_TRANSFORM,
    EVENT_BURST_CHARGE,
    EVENT_BURST_COOLDOWN_REDUCE,
    EVENT_BURST_USE,
    EVENT_DAMAGE,
    EVENT_FULL_BURST,
    EVENT_FULL_BURST_END,
    EVENT_FULL_CHARGE,
    EVENT_HEAL,
    EVENT_LAST_BULLET,
    EVENT_RELOAD_START,
    EVENT_REPLACE_ATTACK,
    EVENT_SHOT_FIRED,
    EVENT_SKILL_ACTIVATE,
    EVENT_SKILL_HIT,
    EVENT_SKILL_TRIGGER,
    EVENT_TICK,
    EventBus,
)
from squadsim.events.mediator import REQUEST_CALCULATE_INSTANT_DAMAGE, REQUEST_GET_BUFF_STACKS, Mediator
from squadsim.scheduler import EventScheduler
from squadsim.world import battle_state, member_components

logger = logging.getLogger(__name__)

# Trigger event names used in character data -> bus events.
TRIGGER_EVENTS = {
    "ATTACK": EVENT_SHOT_FIRED,
    "DAMAGE": EVENT_DAMAGE,
    "RELOAD": EVENT_RELOAD_START,
    "BURST_USE": EVENT_BURST_USE,
    "FULL_BURST_START": EVENT_FULL_BURST,
    "FULL_BURST_END": EVENT_FULL_BURST_END,
    "LAST_BULLET_HIT": EVENT_LAST_BULLET,
    "FULL_CHARGE_ATTACK": EVENT_FULL_CHARGE,
    "HEAL_RECEIVED": EVENT_HEAL,
    "BATTLE_START": EVENT_BATTLE_START,
}

# Payload key naming the character an event is about. Events without one are squad-wide.
SUBJECT_KEYS = {EVENT_HEAL: "target_id"}

# Trigger handlers run after the combat system has updated state for the same event.
TRIGGER_PRIORITY = 8
MAX_ACTIVATION_DEPTH = 8


@dataclass(slots=True)
class TriggerBinding:
    """A trigger rule attached to one character's skill, plus its runtime state."""

    character_id: str
    skill: SkillDefinition
    trigger: Any
    baseline: float = 0.0
    last_value: float = 0.0
    next_check: float = 0.0
    active: bool = False
    fired: int = 0


class SkillSystem:
    """Registers skill triggers and processes the effects they fire.

    Event triggers are looked up by bus event; accumulator, periodic and
    state triggers are polled on every tick. Effects never touch other
    systems' state directly: they publish buff/combat events or ask the
    mediator.
    """

    def __init__(self, event_bus: EventBus, mediator: Mediator, scheduler: EventScheduler):
        self.event_bus = event_bus
        self.mediator = mediator
        self.scheduler = scheduler
        self.event_triggers: Dict[str, List[TriggerBinding]] = {}
        self.accumulators: List[TriggerBinding] = []
        self.periodic: List[TriggerBinding] = []
        self._depth = 0
        self._unknown_conditions: set[str] = set()
        for bus_event in set(TRIGGER_EVENTS.values()):
            self.event_bus.subscribe(bus_event, partial(self.on_combat_event, bus_event), priority=TRIGGER_PRIORITY)
        self.event_bus.subscribe(EVENT_TICK, self.on_tick, priority=TRIGGER_PRIORITY)
        self.event_bus.subscribe(EVENT_SKILL_HIT, self.on_skill_hit)

    def register_character(self, character_id: str, definition: CharacterDefinition) -> None:
        for skill in definition.skills:
            for trigger in skill.triggers:
                binding = TriggerBinding(character_id=character_id, skill=skill, trigger=trigger)
                if isinstance(trigger, EventTrigger):
                    bus_event = TRIGGER_EVENTS.get(trigger.event)
                    if bus_event is None:
                        logger.warning("%s: unknown trigger event %s", skill.id, trigger.event)
                        continue
                    self.event_triggers.setdefault(bus_event, []).append(binding)
                elif isinstance(trigger, AccumulatorTrigger):
                    self.accumulators.append(binding)
                elif isinstance(trigger, PeriodicTrigger):
                    binding.next_check = trigger.interval
                    self.periodic.append(binding)
                elif isinstance(trigger, StateTrigger):
                    binding.next_check = STATE_CHECK_INTERVAL
                    self.periodic.append(binding)
                else:
                    raise TypeError(f"unsupported trigger {trigger!r}")
        logger.debug("Registered skills for %s", character_id)

    def reset(self) -> None:
        self.event_triggers.clear()
        self.accumulators.clear()
        self.periodic.clear()

    # ------------------------------------------------------------------
    # Trigger evaluation
    # ------------------------------------------------------------------

    def on_combat_event(self, bus_event: str, sender, **payload):
        bindings = self.event_triggers.get(bus_event)
        if not bindings:
            return
        subject = payload.get(SUBJECT_KEYS.get(bus_event, "character_id"))
        time = payload.get("time", self.scheduler.now)
        for binding in list(bindings):
            scope = binding.trigger.scope or (SCOPE_SELF if subject is not None else SCOPE_GLOBAL)
            if scope == SCOPE_SELF and subject != binding.character_id:
                continue
            self.fire(binding, time)

    def on_tick(self, sender, **payload):
        time = payload.get("time", self.scheduler.now)
        for binding in list(self.accumulators):
            self._check_accumulator(binding, time)
        for binding in list(self.periodic):
            if time + 1e-9 < binding.next_check:
                continue
            if isinstance(binding.trigger, StateTrigger):
                self._check_state(binding, time)
                binding.next_check = time + STATE_CHECK_INTERVAL
            else:
                if self._condition_holds(binding.trigger.condition):
                    self.fire(binding, time)
                binding.next_check = time + binding.trigger.interval

    def _check_accumulator(self, binding: TriggerBinding, time: float) -> None:
        trigger: AccumulatorTrigger = binding.trigger
        value = self._read_counter(binding.character_id, trigger.source) - binding.baseline
        if value >= trigger.threshold and binding.last_value < trigger.threshold:
            self.fire(binding, time)
            if trigger.reset_on_trigger:
                binding.baseline += value
                value = 0.0
        binding.last_value = value

    def _check_state(self, binding: TriggerBinding, time: float) -> None:
        holds = self._condition_holds(binding.trigger.condition)
        if holds and not binding.active:
            binding.active = True
            self.fire(binding, time)
        elif not holds and binding.active:
            binding.active = False
            self._release_conditional(binding)

    def _read_counter(self, character_id: str, source: str) -> float:
        scope, _, name = source.partition(".")
        if scope == "global":
            state = battle_state()
            return float(state.counters.get(name, 0)) if state is not None else 0.0
        found = member_components(character_id)
        if found is None:
            return 0.0
        return float(found[2].counters.get(name, 0))

    def _condition_holds(self, condition: str | None) -> bool:
        if condition is None:
            return True
        state = battle_state()
        if condition == "isFullBurst":
            return bool(state is not None and state.full_burst)
        if condition not in self._unknown_conditions:
            self._unknown_conditions.add(condition)
            logger.warning("Unknown trigger condition %s; treated as false", condition)
        return False

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def fire(self, binding: TriggerBinding, time: float) -> None:
        if self._depth >= MAX_ACTIVATION_DEPTH:
            logger.warning(
                "Skipping %s/%s: activation chain deeper than %d",
                binding.skill.id,
                binding.trigger.id,
                MAX_ACTIVATION_DEPTH,
            )
            return
        skill = binding.skill
        character_id = binding.character_id
        binding.fired += 1
        self.event_bus.emit(
            EVENT_SKILL_TRIGGER,
            character_id=character_id,
            skill_slot=skill.slot,
            trigger_id=binding.trigger.id,
            time=time,
        )
        self._depth += 1
        try:
            for index, effect in skill.effects_for(binding.trigger.id):
                self.process_effect(character_id, f"{skill.id}_{index}", effect, time)
        finally:
            self._depth -= 1
        if skill.slot == "skill1":
            found = member_components(character_id)
            if found is not None:
                found[2].skill1_count += 1
        self.event_bus.emit(
            EVENT_SKILL_ACTIVATE,
            character_id=character_id,
            skill_slot=skill.slot,
            skill_id=skill.id,
            trigger_id=binding.trigger.id,
            time=time,
        )

    def process_effect(self, character_id: str, default_buff_id: str, effect, time: float) -> None:
        targets = self.resolve_targets(effect.target, character_id)
        if isinstance(effect, BuffEffect):
            for target_id in targets:
                self.event_bus.emit(
                    EVENT_BUFF_APPLY,
                    buff_id=effect.buff_id or default_buff_id,
                    target_id=target_id,
                    source_id=character_id,
                    stats=effect.stats,
                    duration=effect.duration,
                    stackable=False,
                )
        elif isinstance(effect, StackEffect):
            for target_id in targets:
                self.event_bus.emit(
                    EVENT_BUFF_APPLY,
                    buff_id=effect.buff_id,
                    target_id=target_id,
                    source_id=character_id,
                    stats=effect.stats,
                    duration=effect.duration,
                    stackable=True,
                    max_stacks=effect.max_stacks,
                )
                stacks = self.mediator.request_or(
                    REQUEST_GET_BUFF_STACKS,
                    {"target_id": target_id, "buff_id": effect.buff_id},
                    0,
                )
                if stacks >= effect.max_stacks:
                    for sub_index, sub_effect in enumerate(effect.on_max_stacks):
                        self.process_effect(character_id, f"{default_buff_id}_max{sub_index}", sub_effect, time)
        elif isinstance(effect, ReplaceAttackEffect):
            for target_id in targets:
                self.event_bus.emit(
                    EVENT_REPLACE_ATTACK,
                    character_id=target_id,
                    pellets_per_shot=effect.pellets_per_shot,
                    penetration=effect.penetration,
                    shots=effect.shots,
                )
        elif isinstance(effect, InstantDamageEffect):
            self._deal_skill_damage(character_id, effect.multiplier, time)
        elif isinstance(effect, MultiHitDamageEffect):
            for hit in range(effect.hits):
                self.scheduler.schedule(
                    time + hit * MULTI_HIT_INTERVAL,
                    EVENT_SKILL_HIT,
                    {"character_id": character_id, "multiplier": effect.multiplier, "hit": hit + 1},
                )
        elif isinstance(effect, HealEffect):
            for target_id in targets:
                self.event_bus.emit(
                    EVENT_HEAL,
                    source_id=character_id,
                    target_id=target_id,
                    amount=effect.amount,
                    basis=effect.basis,
                    time=time,
                )
        elif isinstance(effect, BurstChargeEffect):
            self.event_bus.emit(EVENT_BURST_CHARGE, source_id=character_id, amount=effect.amount, time=time)
        elif isinstance(effect, AmmoChargeEffect):
            for target_id in targets:
                self.event_bus.emit(EVENT_AMMO_CHARGE, target_id=target_id, amount=effect.amount, time=time)
        elif isinstance(effect, BurstCooldownReductionEffect):
            self.event_bus.emit(
                EVENT_BURST_COOLDOWN_REDUCE,
                source_id=character_id,
                amount=effect.amount,
                targets=targets,
                time=time,
            )
        elif isinstance(effect, TransformBuffEffect):
            for target_id in targets:
                self.event_bus.emit(
                    EVENT_BUFF_TRANSFORM,
                    target_id=target_id,
                    from_buff_id=effect.from_buff_id,
                    to_buff_id=effect.to_buff_id,
                    new_stats=effect.new_stats,
                )
        else:
            raise TypeError(f"unsupported effect {effect!r}")

    def resolve_targets(self, mode: str, character_id: str) -> List[str]:
        if mode == TARGET_SELF:
            return [character_id]
        if mode == TARGET_ENEMY:
            return [ENEMY_TARGET_ID]
        state = battle_state()
        members = list(state.members) if state is not None else [character_id]
        if mode == TARGET_ALL_ALLIES:
            return members
        burst_users = list(state.burst_users) if state is not None else []
        if mode == TARGET_BURST_USERS:
            return [member for member in members if member in burst_users]
        if mode == TARGET_NON_BURST_USERS:
            return [member for member in members if member not in burst_users]
        raise ValueError(f"unknown target mode {mode!r}")

    def on_skill_hit(self, sender, **payload):
        character_id = payload.get("character_id")
        multiplier = payload.get("multiplier")
        if character_id is None or multiplier is None:
            return
        self._deal_skill_damage(character_id, float(multiplier), payload.get("time", self.scheduler.now))

    def _deal_skill_damage(self, character_id: str, multiplier: float, time: float) -> None:
        damage = self.mediator.request_or(
            REQUEST_CALCULATE_INSTANT_DAMAGE,
            {"character_id": character_id, "multiplier": multiplier},
            0,
        )
        if damage <= 0:
            return
        self.event_bus.emit(
            EVENT_DAMAGE,
            character_id=character_id,
            damage=damage,
            kind="skill",
            pellets=0,
            crits=0,
            core_hits=0,
            time=time,
        )

    def _release_conditional(self, binding: TriggerBinding) -> None:
        skill = binding.skill
        for index, effect in skill.effects_for(binding.trigger.id):
            if not isinstance(effect, BuffEffect) or effect.duration.type != DURATION_CONDITIONAL:
                continue
            buff_id = effect.buff_id or f"{skill.id}_{index}"
            for target_id in self.resolve_targets(effect.target, binding.character_id):
                self.event_bus.emit(
                    EVENT_BUFF_REMOVE,
                    target_id=target_id,
                    buff_key=(binding.character_id, buff_id),
                    reason="condition",
                )
