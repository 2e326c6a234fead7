"""Tests for filter and update sanitization."""

import pytest

from joel.query_guard import (
    QueryGuardError,
    guard_filter,
    guard_update,
    sanitize_value,
)


class TestSanitizeValue:
    """Tests for value normalization."""

    def test_strips_control_characters(self):
        assert sanitize_value("Du\x00pont\x1f") == "Dupont"

    def test_nfkc_normalizes_nested_strings(self):
        value = {"name": ["ﬁne", {"inner": "Ａ"}]}
        assert sanitize_value(value) == {"name": ["fine", {"inner": "A"}]}

    def test_leaves_other_types_alone(self):
        assert sanitize_value(42) == 42
        assert sanitize_value(None) is None


class TestGuardFilter:
    """Tests for filter validation."""

    def test_allows_filter_operators(self):
        query = {
            "message_app": {"$in": ["Telegram"]},
            "status": {"$ne": "blocked"},
            "$or": [{"_id": 1}, {"_id": {"$gte": 3}}],
        }
        assert guard_filter(query) == query

    def test_rejects_where_operator(self):
        with pytest.raises(QueryGuardError, match='Disallowed MongoDB operator "\\$where"'):
            guard_filter({"$where": "this.chat_id == 1"})

    def test_rejects_update_operator_in_filter(self):
        with pytest.raises(QueryGuardError, match="filter.status"):
            guard_filter({"status": {"$set": "active"}})

    def test_rejects_unsafe_property_names(self):
        with pytest.raises(QueryGuardError, match='Unsafe property name "__proto__"'):
            guard_filter({"__proto__": {"admin": True}})

        with pytest.raises(QueryGuardError, match="constructor"):
            guard_filter({"$and": [{"constructor": 1}]})

    def test_error_path_includes_list_index(self):
        with pytest.raises(QueryGuardError, match=r"filter\.\$or\[1\]"):
            guard_filter({"$or": [{"_id": 1}, {"$function": {}}]})


class TestGuardUpdate:
    """Tests for update validation."""

    def test_allows_update_and_filter_operators(self):
        update = {"$set": {"status": "active"}, "$unset": {"chat_id": ""}}
        assert guard_update(update) == update

    def test_rejects_unknown_operator(self):
        with pytest.raises(QueryGuardError, match='"\\$accumulator"'):
            guard_update({"$accumulator": {}})

    def test_sanitizes_values(self):
        assert guard_update({"$set": {"language_code": "fr\x07"}}) == {
            "$set": {"language_code": "fr"}
        }
