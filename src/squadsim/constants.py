# Combat constants shared by the damage pipeline and the combat systems.

WEAPON_CLASSES = ("AR", "SMG", "SR", "RL", "MG", "SG")

BASE_CRIT_RATE = 0.15
BASE_CRIT_DAMAGE = 0.5
CORE_HIT_BONUS = 1.0
OPTIMAL_DISTANCE_BONUS = 0.3
FULL_BURST_BONUS = 0.5
ELITE_BASE_MULTIPLIER = 1.1
ELITE_CODE_BONUS = 0.1909
DEFAULT_ENEMY_DEFENSE = 6070
DEFAULT_CHARGE_MULTIPLIER = 2.5

OPTIMAL_DISTANCE = {
    "AR": 3,
    "SMG": 2,
    "SR": 4,
    "RL": 4,
    "MG": 3,
    "SG": 1,
}

COLLECTION_BONUS = {
    "AR": {"coreBonus": 0.0, "chargeRatio": 0.0, "damageMultiplier": 1.0, "maxAmmo": 0.0},
    "SMG": {"coreBonus": 0.0, "chargeRatio": 0.0, "damageMultiplier": 1.0, "maxAmmo": 0.15},
    "SR": {"coreBonus": 0.1, "chargeRatio": 0.15, "damageMultiplier": 1.0, "maxAmmo": 0.0},
    "RL": {"coreBonus": 0.0, "chargeRatio": 0.1, "damageMultiplier": 1.1, "maxAmmo": 0.0},
    "MG": {"coreBonus": 0.0, "chargeRatio": 0.0, "damageMultiplier": 1.0, "maxAmmo": 0.15},
    "SG": {"coreBonus": 0.15, "chargeRatio": 0.0, "damageMultiplier": 1.0, "maxAmmo": 0.0},
}

# Spread model inputs for the core hit probability.
BASE_ACCURACY = {"AR": 50, "SMG": 30, "SR": 80, "RL": 70, "MG": 40, "SG": 20}
SPREAD_COEFFICIENT = {"AR": 0.5, "SMG": 0.8, "SR": 0.3, "RL": 0.4, "MG": 0.7, "SG": 1.0}
MIN_SPREAD = 5.0
GUARANTEED_CORE_CLASSES = frozenset({"RL", "SR", "MG"})

# Burst rotation, in seconds.
BURST_FIRST_READY = 5.0
BURST_CYCLE_TIME = 20.0
BURST_STAGGER = 0.143
FULL_BURST_DURATION = 10.0
BURST_POSITIONS = (1, 2, 3)

TICK_INTERVAL = 0.1
STATE_CHECK_INTERVAL = 0.1
MULTI_HIT_INTERVAL = 0.1
DEFAULT_PERIODIC_INTERVAL = 1.0
DEFAULT_STACK_LIMIT = 20

ENEMY_TARGET_ID = "enemy"

# Default aggregate stat set. Every buff total starts from these values.
DEFAULT_BUFF_TOTALS = {
    "atkPercent": 0.0,
    "fixedATK": 0.0,
    "critRate": BASE_CRIT_RATE,
    "critDamage": 0.0,
    "accuracy": 0.0,
    "damageIncrease": 0.0,
    "eliteDamage": 0.0,
    "coreBonus": 0.0,
    "penetrationDamage": 0.0,
    "distributedDamage": 0.0,
    "receivedDamage": 0.0,
    "attackSpeed": 0.0,
    "pelletBonus": 0.0,
    "helmCritBonus": 0.0,
    "reloadSpeed": 0.0,
    "maxAmmo": 0.0,
    "ammoCharge": 0.0,
    "distanceBonus": 0.0,
    "partDamage": 0.0,
    "dotDamage": 0.0,
    "defIgnoreDamage": 0.0,
    "chargeDamage": 0.0,
    "chargeRatio": 0.0,
    "healReceived": 0.0,
}

CUBE_DATA = {
    "reload": {"name": "Reload cube", "effects": {"reloadSpeed": 0.15}},
}

# Overload option values per level (1..15), in percent.
_PRIMARY_TABLE = (10.95, 14.08, 16.44, 18.26, 19.70, 20.84, 21.75, 22.47, 23.04, 23.49, 23.83, 24.09, 24.28, 24.42, 24.52)
_SECONDARY_TABLE = (5.48, 7.04, 8.22, 9.13, 9.85, 10.42, 10.88, 11.24, 11.52, 11.74, 11.91, 12.04, 12.14, 12.21, 12.26)

OVERLOAD_OPTIONS = {
    "attack": (4.93, 6.34, 7.40, 8.22, 8.87, 9.38, 9.79, 10.11, 10.37, 10.57, 10.72, 10.84, 10.93, 10.99, 11.04),
    "critRate": _SECONDARY_TABLE,
    "critDamage": _PRIMARY_TABLE,
    "accuracy": _PRIMARY_TABLE,
    "maxAmmo": _PRIMARY_TABLE,
    "eliteDamage": _SECONDARY_TABLE,
}

# Overload option type -> aggregate stat it feeds.
OVERLOAD_STAT = {
    "attack": "atkPercent",
    "critRate": "critRate",
    "critDamage": "critDamage",
    "accuracy": "accuracy",
    "maxAmmo": "maxAmmo",
    "eliteDamage": "eliteDamage",
}

EQUIPMENT_SLOTS = ("helmet", "gloves", "armor", "boots")
OVERLOAD_SLOTS_PER_EQUIPMENT = 3
MAX_OVERLOAD_LEVEL = 15

SQUAD_SIZE = 5
VALID_CORE_SIZES = (0, 20, 30, 40, 50, 75, 100)
