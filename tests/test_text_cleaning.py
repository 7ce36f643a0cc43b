"""
Tests for record text cleaning before embedding.
"""

from catalog_recommender.core.text_cleaning import (
    clean_text,
    normalize_whitespace,
    strip_markup,
    trim_boilerplate,
    truncate,
)


def test_strip_markup_keeps_text():
    html = "<p>Printer <b>jammed</b></p><script>alert(1)</script><style>p {}</style>"

    text = normalize_whitespace(strip_markup(html))

    assert text == "Printer jammed"


def test_plain_text_untouched():
    assert strip_markup("no markup here") == "no markup here"


def test_quoted_reply_removed():
    text = "VPN drops every hour.\n\nOn Mon, Jan 5, 2026 at 9:00 Alice wrote:\n> old message"

    assert trim_boilerplate(text).strip() == "VPN drops every hour."


def test_original_message_removed():
    text = "Please reset my token.\n-----Original Message-----\nFrom: helpdesk"

    assert "helpdesk" not in trim_boilerplate(text)


def test_disclaimer_fragment_removed():
    text = "Cannot print. This email and any attachments are confidential and intended for the recipient."

    assert normalize_whitespace(trim_boilerplate(text)) == "Cannot print."


def test_normalize_whitespace():
    assert normalize_whitespace("  a \n\t b   c ") == "a b c"


class TestTruncate:
    """Test input size capping."""

    def test_short_text_unchanged(self):
        assert truncate("short text", 100) == "short text"

    def test_cut_at_word_boundary(self):
        assert truncate("alpha beta gamma delta", 13) == "alpha beta"

    def test_hard_cut_without_boundary(self):
        assert truncate("abcdefghij", 4) == "abcd"


def test_clean_text_pipeline():
    raw = "<div>Printer   <i>offline</i></div>\nSent from my iPhone"

    assert clean_text(raw) == "Printer offline"


def test_clean_text_respects_limit():
    assert len(clean_text("word " * 5000, max_chars=100)) <= 100


def test_clean_text_empty():
    assert clean_text("") == ""
    assert clean_text("<p>   </p>") == ""
