"""
Tests for rule validation, naming helpers and attribute casts.
"""

from __future__ import annotations

import datetime

import pytest

from quarry.models.casts import cast_value, now_string, storage_value
from quarry.models.naming import (
    pascal_case,
    pluralize,
    quote_identifier,
    snake_case,
    table_name_for,
)
from quarry.models.validation import check_rule, parse_rules, validate


class TestRules:
    @pytest.mark.parametrize(
        "value, rule, ok",
        [
            ("x", "required", True),
            ("  ", "required", False),
            (None, "required", False),
            ([], "required", False),
            (0, "required", True),
            ("ana@example.com", "email", True),
            ("ana@example", "email", False),
            (42, "email", False),
            ("3.5", "numeric", True),
            (7, "numeric", True),
            (True, "numeric", False),
            ("seven", "numeric", False),
            ("abc", "min:3", True),
            ("ab", "min:3", False),
            ("abcd", "max:3", False),
            ([1, 2], "max:3", True),
            ("anything", "unknown_rule", True),
            ("anything", "min:lots", True),
        ],
    )
    def test_check_rule(self, value, rule, ok):
        assert check_rule(value, rule) is ok

    def test_parse_rules(self):
        assert parse_rules("required| email |min:3") == ["required", "email", "min:3"]
        assert parse_rules(["required", " max:5 "]) == ["required", "max:5"]

    def test_validate_collects_every_failure(self):
        result = validate(
            {"name": "A", "age": "old"},
            {"name": "required|min:2", "age": "numeric", "email": "required|email"},
        )
        assert result == {
            "name": ["The name field is invalid for rule min:2."],
            "age": ["The age field is invalid for rule numeric."],
            "email": [
                "The email field is invalid for rule required.",
                "The email field is invalid for rule email.",
            ],
        }

    def test_custom_messages(self):
        result = validate({}, {"email": "required"}, {"email.required": "Email please."})
        assert result == {"email": ["Email please."]}

    def test_passing(self):
        assert validate({"name": "Ana"}, {"name": "required"}) is True


class TestNaming:
    @pytest.mark.parametrize(
        "word, plural",
        [
            ("post", "posts"),
            ("category", "categories"),
            ("day", "days"),
            ("box", "boxes"),
            ("status", "statuses"),
            ("match", "matches"),
            ("wish", "wishes"),
            ("", ""),
        ],
    )
    def test_pluralize(self, word, plural):
        assert pluralize(word) == plural

    def test_case_conversion(self):
        assert snake_case("BlogPost") == "blog_post"
        assert snake_case("HTTPRequest") == "http_request"
        assert pascal_case("create_posts_table") == "CreatePostsTable"
        assert table_name_for("UserProfile") == "user_profiles"

    def test_quote_identifier(self):
        assert quote_identifier("posts") == '"posts"'
        assert quote_identifier("posts.id") == '"posts"."id"'
        assert quote_identifier("posts.*") == '"posts".*'
        assert quote_identifier('we"ird') == '"we""ird"'


class TestCasts:
    def test_read_casts(self):
        assert cast_value("int", "7") == 7
        assert cast_value("float", "1.5") == 1.5
        assert cast_value("string", 3) == "3"
        assert cast_value("bool", 0) is False
        assert cast_value("bool", "false") is False
        assert cast_value("bool", "yes") is True
        assert cast_value("json", '{"a": [1]}') == {"a": [1]}
        assert cast_value("json", b"[1, 2]") == [1, 2]
        assert cast_value("datetime", "2024-01-02 03:04:05") == datetime.datetime(2024, 1, 2, 3, 4, 5)
        assert cast_value("date", "2024-01-02") == datetime.date(2024, 1, 2)
        assert cast_value("mystery", "as-is") == "as-is"
        assert cast_value("int", None) is None

    def test_storage_values(self):
        assert storage_value("json", {"a": 1}) == '{"a": 1}'
        assert storage_value("json", "[1]") == "[1]"
        assert storage_value("bool", True) == 1
        assert storage_value("bool", "0") == 0
        assert storage_value("datetime", datetime.datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02 03:04:05"
        assert storage_value("date", datetime.date(2024, 1, 2)) == "2024-01-02"
        assert storage_value("json", None) is None

    def test_now_string_format(self):
        parsed = datetime.datetime.strptime(now_string(), "%Y-%m-%d %H:%M:%S")
        assert abs((datetime.datetime.now() - parsed).total_seconds()) < 5
