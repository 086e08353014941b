from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Tuple, cast

import esper

from squadsim.components.buff import Buff
from squadsim.components.buff_list import BuffList
from squadsim.components.character import Character
from squadsim.constants import DEFAULT_BUFF_TOTALS
from squadsim.effects.definitions import DURATION_SHOTS, BuffDuration, StatModifier
from squadsim.effects.loader import parse_duration, parse_stats
from squadsim.events.bus import (
    EVENT_BUFF_APPLIED,
    EVENT_BUFF_APPLY,
    EVENT_BUFF_DECREMENT_SHOT,
    EVENT_BUFF_REMOVE,
    EVENT_BUFF_REMOVED,
    EVENT_BUFF_TRANSFORM,
    EVENT_TICK,
    EventBus,
)
from squadsim.events.mediator import REQUEST_GET_BUFF_STACKS, REQUEST_GET_TOTAL_BUFFS, Mediator
from squadsim.world import find_member

logger = logging.getLogger(__name__)

BuffKey = Tuple[str, str]


class BuffSystem:
    """Owns every active buff and answers aggregate stat queries.

    Buffs are entities carrying a ``Buff`` component; each target keeps a
    ``BuffList`` of its buff entities. Other systems change buffs only by
    publishing buff events.
    """

    def __init__(self, event_bus: EventBus, mediator: Mediator, clock: Callable[[], float]):
        self.event_bus = event_bus
        self.mediator = mediator
        self.clock = clock
        self._static_buffs: Dict[str, Dict[str, float]] = {}
        self.event_bus.subscribe(EVENT_BUFF_APPLY, self.on_buff_apply)
        self.event_bus.subscribe(EVENT_BUFF_REMOVE, self.on_buff_remove)
        self.event_bus.subscribe(EVENT_BUFF_TRANSFORM, self.on_buff_transform)
        self.event_bus.subscribe(EVENT_BUFF_DECREMENT_SHOT, self.on_decrement_shot)
        self.event_bus.subscribe(EVENT_TICK, self.on_tick, priority=1)
        self.mediator.register_handler(REQUEST_GET_TOTAL_BUFFS, self._handle_total_request)
        self.mediator.register_handler(REQUEST_GET_BUFF_STACKS, self._handle_stacks_request)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def on_buff_apply(self, sender, **payload):
        buff_id = payload.get("buff_id")
        target_id = payload.get("target_id")
        if buff_id is None or target_id is None:
            return
        duration = payload.get("duration")
        if not isinstance(duration, BuffDuration):
            duration = parse_duration(duration)
        self.apply(
            buff_id,
            target_id,
            payload.get("source_id") or target_id,
            parse_stats(payload.get("stats") or {}),
            duration,
            stackable=bool(payload.get("stackable", False)),
            max_stacks=int(payload.get("max_stacks", 1)),
        )

    def on_buff_remove(self, sender, **payload):
        target_id = payload.get("target_id")
        if target_id is None:
            return
        reason = payload.get("reason", "removed")
        buff_key = payload.get("buff_key")
        if buff_key is not None:
            self.remove(target_id, tuple(buff_key), reason=reason)
            return
        buff_id = payload.get("buff_id")
        if buff_id is not None:
            self.remove_by_id(target_id, buff_id, reason=reason)

    def on_buff_transform(self, sender, **payload):
        target_id = payload.get("target_id")
        from_buff_id = payload.get("from_buff_id")
        to_buff_id = payload.get("to_buff_id")
        if target_id is None or from_buff_id is None or to_buff_id is None:
            return
        self.transform(target_id, from_buff_id, to_buff_id, parse_stats(payload.get("new_stats") or {}))

    def on_decrement_shot(self, sender, **payload):
        character_id = payload.get("character_id")
        if character_id is not None:
            self.decrement_shots(character_id)

    def on_tick(self, sender, **payload):
        self.expire(payload.get("time", self.clock()))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def apply(
        self,
        buff_id: str,
        target_id: str,
        source_id: str,
        stats: Mapping[str, StatModifier],
        duration: BuffDuration,
        *,
        stackable: bool = False,
        max_stacks: int = 1,
    ) -> int:
        """Add a buff, or refresh the one already keyed ``(source_id, buff_id)``."""
        now = self.clock()
        buff_list = self._ensure_buff_list(target_id)
        existing = self._find(buff_list, (source_id, buff_id))
        if existing is not None:
            buff_entity, buff = existing
            if buff.stackable:
                buff.stacks = min(buff.stacks + 1, buff.max_stacks)
            else:
                buff.stats = dict(stats)
            buff.start_time = now
            if buff.duration_type == DURATION_SHOTS:
                buff.remaining_shots = int(buff.duration_value)
            self.event_bus.emit(
                EVENT_BUFF_APPLIED,
                buff_entity=buff_entity,
                target_id=target_id,
                buff_id=buff_id,
                stacks=buff.stacks,
                refreshed=True,
            )
            return buff_entity

        buff = Buff(
            buff_id=buff_id,
            source_id=source_id,
            target_id=target_id,
            duration_type=duration.type,
            duration_value=duration.value,
            start_time=now,
            stats=dict(stats),
            stackable=stackable,
            max_stacks=max(1, int(max_stacks)),
            remaining_shots=int(duration.value) if duration.type == DURATION_SHOTS else 0,
        )
        buff_entity = esper.create_entity(buff)
        buff_list.buff_entities.append(buff_entity)
        logger.debug("Applied %s from %s to %s at %.3f", buff_id, source_id, target_id, now)
        self.event_bus.emit(
            EVENT_BUFF_APPLIED,
            buff_entity=buff_entity,
            target_id=target_id,
            buff_id=buff_id,
            stacks=buff.stacks,
            refreshed=False,
        )
        return buff_entity

    def remove(self, target_id: str, buff_key: BuffKey, *, reason: str = "removed") -> bool:
        buff_list = self._get_buff_list(target_id)
        if buff_list is None:
            return False
        found = self._find(buff_list, buff_key)
        if found is None:
            return False
        self._drop(buff_list, found[0], found[1], reason)
        return True

    def remove_by_id(self, target_id: str, buff_id: str, *, reason: str = "removed") -> int:
        """Remove every buff named ``buff_id`` on the target regardless of source."""
        buff_list = self._get_buff_list(target_id)
        if buff_list is None:
            return 0
        removed = 0
        for buff_entity, buff in self._buffs(buff_list):
            if buff.buff_id == buff_id:
                self._drop(buff_list, buff_entity, buff, reason)
                removed += 1
        return removed

    def transform(
        self,
        target_id: str,
        from_buff_id: str,
        to_buff_id: str,
        new_stats: Mapping[str, StatModifier],
    ) -> int | None:
        """Replace ``from_buff_id`` with ``to_buff_id`` keeping source and duration type."""
        buff_list = self._get_buff_list(target_id)
        if buff_list is None:
            return None
        for buff_entity, buff in self._buffs(buff_list):
            if buff.buff_id != from_buff_id:
                continue
            self._drop(buff_list, buff_entity, buff, "transformed")
            return self.apply(
                to_buff_id,
                target_id,
                buff.source_id,
                new_stats,
                BuffDuration(buff.duration_type, buff.duration_value),
                stackable=buff.stackable,
                max_stacks=buff.max_stacks,
            )
        logger.debug("No %s on %s to transform", from_buff_id, target_id)
        return None

    def expire(self, current_time: float) -> List[Buff]:
        expired: List[Buff] = []
        for _entity, buff_list in list(esper.get_component(BuffList)):
            for buff_entity, buff in self._buffs(buff_list):
                if buff.duration_type != DURATION_SHOTS and buff.is_expired(current_time):
                    self._drop(buff_list, buff_entity, buff, "duration")
                    expired.append(buff)
        return expired

    def decrement_shots(self, character_id: str) -> None:
        buff_list = self._get_buff_list(character_id)
        if buff_list is None:
            return
        for buff_entity, buff in self._buffs(buff_list):
            if buff.duration_type != DURATION_SHOTS:
                continue
            buff.remaining_shots -= 1
            if buff.remaining_shots <= 0:
                self._drop(buff_list, buff_entity, buff, "shots")

    def set_static_buffs(self, character_id: str, static_buffs: Mapping[str, float]) -> None:
        self._static_buffs[character_id] = dict(static_buffs)

    def static_buffs(self, character_id: str) -> Dict[str, float]:
        return dict(self._static_buffs.get(character_id, {}))

    def calculate_total(
        self,
        character_id: str,
        static_buffs: Mapping[str, float] | None = None,
        at_time: float | None = None,
    ) -> Dict[str, float]:
        """Aggregate stat modifiers for ``character_id``. Reads only."""
        now = self.clock() if at_time is None else at_time
        totals: Dict[str, float] = dict(DEFAULT_BUFF_TOTALS)
        if static_buffs is None:
            static_buffs = self._static_buffs.get(character_id, {})
        for name, value in static_buffs.items():
            totals[name] = totals.get(name, 0.0) + float(value)
        buff_list = self._get_buff_list(character_id)
        if buff_list is None:
            return totals
        for _buff_entity, buff in self._buffs(buff_list):
            if buff.is_expired(now):
                continue
            for name, modifier in buff.stats.items():
                value = modifier.value
                if modifier.relative_to_source:
                    value *= self._source_attack(buff.source_id)
                if buff.stackable:
                    value *= buff.stacks
                totals[name] = totals.get(name, 0.0) + value
        return totals

    def get_stacks(self, target_id: str, buff_id: str) -> int:
        buff_list = self._get_buff_list(target_id)
        if buff_list is None:
            return 0
        for _buff_entity, buff in self._buffs(buff_list):
            if buff.buff_id == buff_id:
                return buff.stacks
        return 0

    def active_buffs(self, target_id: str) -> List[Buff]:
        buff_list = self._get_buff_list(target_id)
        if buff_list is None:
            return []
        now = self.clock()
        return [buff for _entity, buff in self._buffs(buff_list) if not buff.is_expired(now)]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _handle_total_request(self, data: Mapping[str, Any]):
        character_id = data.get("character_id")
        if character_id is None:
            return None
        return self.calculate_total(character_id)

    def _handle_stacks_request(self, data: Mapping[str, Any]):
        target_id = data.get("target_id")
        buff_id = data.get("buff_id")
        if target_id is None or buff_id is None:
            return None
        return self.get_stacks(target_id, buff_id)

    def _source_attack(self, source_id: str) -> float:
        entity = find_member(source_id)
        if entity is None:
            logger.debug("Buff source %s is not in the squad; relative stat ignored", source_id)
            return 0.0
        character = esper.component_for_entity(entity, Character)
        return character.definition.base_stats.atk

    def _ensure_buff_list(self, target_id: str) -> BuffList:
        buff_list = self._get_buff_list(target_id)
        if buff_list is None:
            buff_list = BuffList(target_id=target_id)
            entity = find_member(target_id)
            if entity is None:
                esper.create_entity(buff_list)
            else:
                esper.add_component(entity, buff_list)
        return buff_list

    def _get_buff_list(self, target_id: str) -> BuffList | None:
        for _entity, buff_list in esper.get_component(BuffList):
            if buff_list.target_id == target_id:
                return buff_list
        return None

    def _buffs(self, buff_list: BuffList) -> List[Tuple[int, Buff]]:
        found: List[Tuple[int, Buff]] = []
        for buff_entity in list(buff_list.buff_entities):
            try:
                found.append((buff_entity, cast(Buff, esper.component_for_entity(buff_entity, Buff))))
            except KeyError:
                buff_list.buff_entities.remove(buff_entity)
        return found

    def _find(self, buff_list: BuffList, buff_key: BuffKey) -> Tuple[int, Buff] | None:
        for buff_entity, buff in self._buffs(buff_list):
            if buff.key == buff_key:
                return buff_entity, buff
        return None

    def _drop(self, buff_list: BuffList, buff_entity: int, buff: Buff, reason: str) -> None:
        if buff_entity in buff_list.buff_entities:
            buff_list.buff_entities.remove(buff_entity)
        if esper.entity_exists(buff_entity):
            esper.delete_entity(buff_entity, immediate=True)
        logger.debug("Removed %s from %s (%s)", buff.buff_id, buff.target_id, reason)
        self.event_bus.emit(
            EVENT_BUFF_REMOVED,
            target_id=buff.target_id,
            buff_id=buff.buff_id,
            source_id=buff.source_id,
            reason=reason,
        )
