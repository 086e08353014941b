import sys, os

# Ensure src is on path for test imports
ROOT = os.path.dirname(os.path.dirname(__file__))
SRC = os.path.join(ROOT, 'src')
if SRC not in sys.path:
    sys.path.insert(0, SRC)

import random

import pytest

from squadsim.effects.definitions import BaseStats, CharacterDefinition
from squadsim.events.bus import EventBus
from squadsim.events.mediator import Mediator
from squadsim.scheduler import EventScheduler
from squadsim.world import create_world, release_world


class StubRandom(random.Random):
    """Random source that replays fixed values from ``random()``."""

    def __init__(self, values=(0.99,)):
        super().__init__(0)
        self.values = list(values)
        self.calls = 0

    def random(self):
        value = self.values[self.calls % len(self.values)]
        self.calls += 1
        return value


def make_definition(
    character_id="rifle",
    *,
    weapon_class="AR",
    atk=100000.0,
    weapon_coef=1.0,
    ammo=6,
    interval=1.0,
    reload_time=20.0,
    pellets=1,
    charge_multiplier=0.0,
    burst_position=None,
    burst_cooldown=20.0,
    skills=(),
):
    return CharacterDefinition(
        id=character_id,
        name=character_id.title(),
        weapon_class=weapon_class,
        base_stats=BaseStats(
            atk=atk,
            weapon_coef=weapon_coef,
            base_ammo=ammo,
            attack_interval=interval,
            reload_time=reload_time,
            base_pellets=pellets,
            charge_multiplier=charge_multiplier,
        ),
        burst_position=burst_position,
        burst_cooldown=burst_cooldown,
        skills=tuple(skills),
    )


@pytest.fixture(autouse=True)
def world():
    name = create_world()
    yield name
    release_world(name)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def mediator(bus):
    return Mediator(bus)


@pytest.fixture
def scheduler():
    return EventScheduler()


@pytest.fixture
def never_rng():
    """Never crits and never lands a core hit on spread weapons."""
    return StubRandom([0.99])


@pytest.fixture
def definition_factory():
    return make_definition


@pytest.fixture
def record(bus):
    """Subscribe a recorder to ``name`` and return the list it fills."""

    def subscribe(name, target_bus=None):
        events = []

        def _record(sender, **payload):
            events.append(payload)

        (target_bus or bus).subscribe(name, _record)
        return events

    return subscribe
