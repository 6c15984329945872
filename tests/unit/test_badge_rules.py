"""Badge unlock rule parsing and evaluation."""

import pytest

from propquest.gamification.badge_rules import (
    AllOf,
    EventCount,
    RuleContext,
    StatThreshold,
    dump_rule,
    evaluate_rule,
    parse_rule,
)
from propquest.gamification.exceptions import ValidationError
from propquest.gamification.seed import BADGE_SEED_DATA


class TestParseRule:

    def test_stat_threshold(self):
        rule = parse_rule({"kind": "stat_threshold", "stat": "current_level", "minimum": 5})
        assert isinstance(rule, StatThreshold)
        assert rule.minimum == 5

    def test_event_count(self):
        rule = parse_rule({"kind": "event_count", "event": "inquiry_answered", "minimum": 10})
        assert isinstance(rule, EventCount)
        assert rule.event == "inquiry_answered"

    def test_nested_all_of(self):
        rule = parse_rule({
            "kind": "all_of",
            "rules": [
                {"kind": "event_count", "event": "listing_published", "minimum": 3},
                {"kind": "all_of", "rules": [{"kind": "stat_threshold", "stat": "total_xp", "minimum": 1}]},
            ],
        })
        assert isinstance(rule, AllOf)
        assert isinstance(rule.rules[1], AllOf)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            parse_rule({"kind": "python", "code": "True"})

    def test_unknown_stat_rejected(self):
        with pytest.raises(ValidationError):
            parse_rule({"kind": "stat_threshold", "stat": "password", "minimum": 1})

    def test_extra_fields_rejected(self):
        with pytest.raises(ValidationError):
            parse_rule({"kind": "event_count", "event": "login", "minimum": 1, "extra": 1})

    def test_empty_all_of_rejected(self):
        with pytest.raises(ValidationError):
            parse_rule({"kind": "all_of", "rules": []})

    def test_zero_event_minimum_rejected(self):
        with pytest.raises(ValidationError):
            parse_rule({"kind": "event_count", "event": "login", "minimum": 0})

    def test_dump_is_stable(self):
        raw = {"kind": "event_count", "event": "login", "minimum": 1}
        assert dump_rule(parse_rule(raw)) == raw

    @pytest.mark.parametrize("badge", BADGE_SEED_DATA, ids=lambda b: b["badge_key"])
    def test_seed_catalog_rules_are_valid(self, badge):
        parse_rule(badge["unlock_rule"])


class TestEvaluateRule:

    def test_stat_threshold_reached(self):
        rule = StatThreshold(stat="current_level", minimum=5)
        assert evaluate_rule(rule, RuleContext(stats={"current_level": 5}))
        assert not evaluate_rule(rule, RuleContext(stats={"current_level": 4}))

    def test_event_count_reached(self):
        rule = EventCount(event="inquiry_answered", minimum=10)
        assert evaluate_rule(rule, RuleContext(event_counts={"inquiry_answered": 12}))
        assert not evaluate_rule(rule, RuleContext(event_counts={"inquiry_answered": 9}))

    def test_missing_values_count_as_zero(self):
        assert not evaluate_rule(EventCount(event="login", minimum=1), RuleContext())
        assert evaluate_rule(StatThreshold(stat="total_xp", minimum=0), RuleContext())

    def test_all_of_requires_every_rule(self):
        rule = AllOf(rules=[
            EventCount(event="inquiry_answered", minimum=50),
            StatThreshold(stat="current_level", minimum=5),
        ])
        both = RuleContext(stats={"current_level": 6}, event_counts={"inquiry_answered": 50})
        one = RuleContext(stats={"current_level": 4}, event_counts={"inquiry_answered": 80})
        assert evaluate_rule(rule, both)
        assert not evaluate_rule(rule, one)
