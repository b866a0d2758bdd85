"""Tests for dot-path lookup and condition evaluation."""

import pytest

from conveyor.triggers.conditions import MISSING, evaluate_condition, get_path


class TestGetPath:
    data = {"booking": {"guest": {"email": "a@b.c"}, "rooms": [{"n": 101}, {"n": 102}]}, "zero": 0}

    def test_nested(self):
        assert get_path(self.data, "booking.guest.email") == "a@b.c"

    def test_list_index(self):
        assert get_path(self.data, "booking.rooms.1.n") == 102
        assert get_path(self.data, "booking.rooms.-1.n") == 102

    def test_missing(self):
        assert get_path(self.data, "booking.guest.phone") is MISSING
        assert get_path(self.data, "booking.rooms.9") is MISSING
        assert get_path(self.data, "booking.rooms.x") is MISSING
        assert get_path(self.data, "zero.deeper") is MISSING

    def test_default(self):
        assert get_path(self.data, "nope", default=None) is None

    def test_empty_path_is_whole_value(self):
        assert get_path(self.data, "") is self.data

    def test_falsy_values_are_found(self):
        assert get_path(self.data, "zero") == 0


class TestEvaluateCondition:
    def test_empty_condition_matches(self):
        assert evaluate_condition({}, {"a": 1}) is True
        assert evaluate_condition(None, {}) is True

    def test_all_pairs_must_hold(self):
        data = {"status": "confirmed", "guest": {"vip": True}}
        assert evaluate_condition({"status": "confirmed", "guest.vip": True}, data) is True
        assert evaluate_condition({"status": "confirmed", "guest.vip": False}, data) is False

    def test_missing_path_does_not_match(self):
        assert evaluate_condition({"status": None}, {}) is False

    def test_explicit_null_matches_none(self):
        assert evaluate_condition({"cancelledAt": None}, {"cancelledAt": None}) is True

    @pytest.mark.parametrize("actual, expected", [(1, True), (True, 1), (0, False)])
    def test_booleans_do_not_equal_numbers(self, actual, expected):
        assert evaluate_condition({"x": expected}, {"x": actual}) is False

    def test_structured_equality(self):
        assert evaluate_condition({"tags": ["a", "b"]}, {"tags": ["a", "b"]}) is True
