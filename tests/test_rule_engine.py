"""
Rule engine: literal replace, wrap, regex and rule-set ordering.
"""

from unittest.mock import patch

from chapterfix.core.rule_engine import (
    apply_rule,
    apply_rules,
    apply_rule_set,
    regex_replace,
    safe_replace,
    safe_wrap,
    to_python_template,
)
from chapterfix.core.schema import ReplaceRule, WrapRule, RegexRule


class TestReplace:
    """Literal replacement."""

    def test_replaces_every_occurrence(self):
        assert safe_replace("AAA", "A", "B") == "BBB"

    def test_metacharacters_are_literal(self):
        assert safe_replace("a.b a*b", ".", "!") == "a!b a*b"
        assert safe_replace("a.b a*b", "*", "+") == "a.b a+b"

    def test_empty_source_is_noop(self):
        assert safe_replace("text", "", "x") == "text"

    def test_replace_with_empty_deletes(self):
        assert apply_rule("foo bar foo", ReplaceRule(from_text="foo ", to_text="")) == "bar foo"


class TestWrap:
    """Wrapping a target in marks."""

    def test_wraps_every_occurrence(self):
        assert safe_wrap("Lâm Phong gặp Lâm Phong", "Lâm Phong", "[", "]") == "[Lâm Phong] gặp [Lâm Phong]"

    def test_already_wrapped_is_left_alone(self):
        once = safe_wrap("Lâm Phong", "Lâm Phong", "[", "]")
        assert safe_wrap(once, "Lâm Phong", "[", "]") == once == "[Lâm Phong]"

    def test_partially_bounded_is_wrapped(self):
        assert safe_wrap("[Lâm Phong", "Lâm Phong", "[", "]") == "[[Lâm Phong]"

    def test_invalid_marks_are_noop(self):
        assert safe_wrap("abc", "b", "", "]") == "abc"
        assert safe_wrap("abc", "b", "*", "*") == "abc"
        assert safe_wrap("a[b]c", "[b]", "[", "]") == "a[b]c"


class TestRegex:
    """Regex replacement and template conversion."""

    def test_dollar_references_are_converted(self):
        assert to_python_template("$1-$2") == r"\g<1>-\g<2>"
        assert to_python_template("$<name>") == r"\g<name>"
        assert to_python_template("[$&]") == r"[\g<0>]"
        assert to_python_template("$$5") == "$5"

    def test_capture_groups(self):
        assert regex_replace("Chương 12", r"Chương (\d+)", "Chapter $1") == "Chapter 12"

    def test_named_group(self):
        assert regex_replace("ab", r"(?P<first>a)b", "$<first>$<first>") == "aa"

    def test_python_style_references_pass_through(self):
        assert regex_replace("ab", r"(a)(b)", r"\2\1") == "ba"

    def test_global_replacement(self):
        assert regex_replace("1 2 3", r"\d", "#") == "# # #"

    def test_invalid_pattern_is_isolated(self):
        rules = [
            RegexRule(pattern="([", replacement="x", id=1),
            ReplaceRule(from_text="a", to_text="b", id=2),
        ]
        with patch("chapterfix.core.rule_engine.logger") as mock_logger:
            assert apply_rules("aaa", rules) == "bbb"
            mock_logger.log_rule_failure.assert_called_once()

    def test_bad_group_reference_is_isolated(self):
        rule = RegexRule(pattern=r"(a)", replacement=r"\5")
        assert apply_rule("abc", rule) == "abc"

    def test_two_digit_reference_falls_back_to_one_digit(self):
        assert to_python_template("$10", group_count=1) == r"\g<1>0"
        assert regex_replace("Chương 7", r"Chương (\d)", "Chapter $10") == "Chapter 70"

    def test_two_digit_reference_to_existing_group(self):
        pattern = "".join(f"({c})" for c in "abcdefghij")
        assert regex_replace("abcdefghij", pattern, "$10$1") == "ja"

    def test_leading_zero_reference(self):
        assert regex_replace("ab", r"(a)(b)", "$02$01") == "ba"

    def test_missing_group_stays_literal(self):
        assert regex_replace("abc", r"(a)", "$5") == "$5bc"
        assert regex_replace("abc", r"a", "$1") == "$1bc"
        assert regex_replace("abc", r"(a)", "$0") == "$0bc"


class TestRuleSet:
    """Ordered application followed by the final sweep."""

    def test_rules_apply_in_order(self):
        rules = [ReplaceRule(from_text="X", to_text="Y"), ReplaceRule(from_text="Y", to_text="Z")]
        assert apply_rules("X", rules) == "Z"

    def test_reversed_order_differs(self):
        rules = [ReplaceRule(from_text="Y", to_text="Z"), ReplaceRule(from_text="X", to_text="Y")]
        assert apply_rules("X", rules) == "Y"

    def test_empty_rule_set_only_sweeps(self):
        assert apply_rule_set("a  [ b ]", []) == "a [b]"

    def test_none_text_becomes_empty(self):
        assert apply_rule_set(None, [ReplaceRule(from_text="a", to_text="b")]) == ""

    def test_wrap_then_sweep(self):
        rules = [WrapRule(target="Kiếm", open_mark="[", close_mark="]")]
        assert apply_rule_set("Thiên Linh Kiếm.", rules) == "Thiên Linh [Kiếm]."
