"""Badge unlock rules as data.

A rule is one of three tagged variants, stored as JSON on the badge row:

    {"kind": "stat_threshold", "stat": "current_level", "minimum": 5}
    {"kind": "event_count", "event": "inquiry_answered", "minimum": 10}
    {"kind": "all_of", "rules": [...]}

``evaluate_rule`` is the whole interpreter; rules never execute code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from propquest.gamification.exceptions import ValidationError

StatName = Literal["total_xp", "current_level", "current_streak", "longest_streak"]


class StatThreshold(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["stat_threshold"] = "stat_threshold"
    stat: StatName
    minimum: int = Field(ge=0)


class EventCount(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["event_count"] = "event_count"
    event: str = Field(min_length=1, max_length=32)
    minimum: int = Field(ge=1)


class AllOf(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["all_of"] = "all_of"
    rules: list[UnlockRule] = Field(min_length=1)


UnlockRule = Annotated[Union[StatThreshold, EventCount, AllOf], Field(discriminator="kind")]

AllOf.model_rebuild()

_rule_adapter: TypeAdapter[UnlockRule] = TypeAdapter(UnlockRule)


@dataclass(frozen=True)
class RuleContext:
    """Everything a rule can look at: user stats and domain event counts."""

    stats: dict[str, int] = field(default_factory=dict)
    event_counts: dict[str, int] = field(default_factory=dict)


def parse_rule(data: dict) -> UnlockRule:
    """Validate raw JSON into a rule, raising ValidationError if malformed."""
    try:
        return _rule_adapter.validate_python(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid unlock rule: {exc.errors(include_url=False)}") from exc


def dump_rule(rule: UnlockRule) -> dict:
    """Serialize a rule back to its JSON form."""
    return _rule_adapter.dump_python(rule, mode="json")


def evaluate_rule(rule: UnlockRule, ctx: RuleContext) -> bool:
    """Evaluate a rule against a context. Missing values count as zero."""
    if isinstance(rule, StatThreshold):
        return ctx.stats.get(rule.stat, 0) >= rule.minimum
    if isinstance(rule, EventCount):
        return ctx.event_counts.get(rule.event, 0) >= rule.minimum
    if isinstance(rule, AllOf):
        return all(evaluate_rule(r, ctx) for r in rule.rules)
    raise ValidationError(f"Unsupported rule kind: {type(rule).__name__}")
