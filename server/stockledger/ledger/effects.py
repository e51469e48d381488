"""Signed stock effects of each movement type.

The live poster and the historical replay both derive their arithmetic from
``EFFECT_RULES`` so a balance can always be rebuilt from the ledger.
"""
from dataclasses import dataclass
from decimal import Decimal

from stockledger.errors import ValidationError

FROM = "from"
TO = "to"


@dataclass(frozen=True)
class EffectRule:
    side: str
    sign: int


EFFECT_RULES: dict[str, tuple[EffectRule, ...]] = {
    "RECEIVE": (EffectRule(TO, 1),),
    "RETURN": (EffectRule(TO, 1),),
    "ISSUE": (EffectRule(FROM, -1),),
    "TRANSFER": (EffectRule(FROM, -1), EffectRule(TO, 1)),
    # ADJUST lines carry a signed qty.
    "ADJUST": (EffectRule(TO, 1),),
}

REQUIRED_SIDES: dict[str, frozenset[str]] = {
    movement_type: frozenset(rule.side for rule in rules) for movement_type, rules in EFFECT_RULES.items()
}


@dataclass(frozen=True)
class Effect:
    location_id: int
    delta: Decimal


def rules_for(movement_type: str) -> tuple[EffectRule, ...]:
    try:
        return EFFECT_RULES[movement_type]
    except KeyError:
        raise ValidationError(f"Unknown movement type {movement_type}.", field="type")


def line_effects(movement_type: str, *, qty, from_location_id: int | None, to_location_id: int | None) -> list[Effect]:
    quantity = Decimal(qty or 0)
    effects = []
    for rule in rules_for(movement_type):
        location_id = from_location_id if rule.side == FROM else to_location_id
        if location_id is None:
            raise ValidationError(f"{movement_type} line requires a {rule.side} location.", field=f"{rule.side}_location_id")
        effects.append(Effect(location_id=location_id, delta=quantity * rule.sign))
    return effects
