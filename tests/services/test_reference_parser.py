"""Unit tests for the deterministic reference parser."""

import pytest

from versecue.services.reference_parser import ReferenceParser, parse_references


@pytest.fixture(scope="module")
def parser():
    return ReferenceParser()


def displays(parser, text):
    return [c.reference.display for c in parser.parse(text)]


class TestLiteralCitations:
    """Written and normalized citations."""

    @pytest.mark.parametrize("text,expected", [
        ("John 3:16", "John 3:16"),
        ("Romans 8:28-30", "Romans 8:28-30"),
        ("1 Corinthians 13:4-7", "1 Corinthians 13:4-7"),
        ("1cor 13:4", "1 Corinthians 13:4"),
        ("Gen 1:1", "Genesis 1:1"),
        ("Psalm 23", "Psalms 23"),
        ("Revelation 22:21", "Revelation 22:21"),
        ("song of solomon 2:1", "Song of Solomon 2:1"),
        ("Numbers 6:24", "Numbers 6:24"),
    ])
    def test_citation(self, parser, text, expected):
        assert displays(parser, text) == [expected]

    def test_embedded_in_sentence(self, parser):
        assert displays(parser, "please open your Bibles to Ephesians 2:8 this morning") == [
            "Ephesians 2:8"
        ]

    def test_verse_needs_colon(self, parser):
        assert displays(parser, "Romans 8 28") == ["Romans 8"]

    def test_count_after_chapter_is_not_a_verse(self, parser):
        assert displays(parser, "We studied Romans 8 2 weeks ago") == ["Romans 8"]

    def test_chapter_survives_trailing_number(self, parser):
        assert displays(parser, "Read Psalm 23 10 times this week") == ["Psalms 23"]

    def test_multiple_in_order(self, parser):
        assert displays(parser, "Genesis 1:1 and then Revelation 22:21") == [
            "Genesis 1:1", "Revelation 22:21",
        ]

    def test_numbered_book_beats_plain(self, parser):
        assert displays(parser, "1 John 4:8") == ["1 John 4:8"]

    def test_same_reference_once(self, parser):
        assert displays(parser, "John 3:16, yes John 3:16") == ["John 3:16"]

    def test_degenerate_range_collapses(self, parser):
        assert displays(parser, "John 3:16-16") == ["John 3:16"]


class TestSpokenCitations:
    """Transcribed speech after normalization."""

    def test_chapter_verse_words(self, parser):
        assert displays(parser, "turn to John chapter three verse sixteen") == ["John 3:16"]

    def test_ordinal_and_range(self, parser):
        text = "first corinthians chapter thirteen verses four through seven"
        assert displays(parser, text) == ["1 Corinthians 13:4-7"]

    def test_bare_numbers(self, parser):
        assert displays(parser, "Romans eight twenty eight") == ["Romans 8:28"]

    def test_second_timothy(self, parser):
        assert displays(parser, "second Timothy three sixteen") == ["2 Timothy 3:16"]

    def test_spoken_pair_after_name_like_book(self, parser):
        assert displays(parser, "John three sixteen") == ["John 3:16"]

    def test_spoken_chapter_only(self, parser):
        assert displays(parser, "Psalm twenty three") == ["Psalms 23"]


class TestRejections:
    """Out-of-range or unsafe matches never become candidates."""

    def test_chapter_out_of_range(self, parser):
        assert parser.parse("Genesis 51:1") == []

    def test_verse_out_of_range(self, parser):
        assert parser.parse("John 3:40") == []

    def test_reversed_range_dropped(self, parser):
        assert parser.parse("John 3:18-16") == []

    def test_plain_speech(self, parser):
        assert parser.parse("God is so good today") == []

    def test_name_like_book_needs_verse(self, parser):
        """'Mark 5' is more likely a person than a chapter."""
        assert parser.parse("I talked to Mark 5 minutes ago") == []
        assert displays(parser, "Mark 5:1") == ["Mark 5:1"]

    def test_noun_like_book_needs_verse(self, parser):
        assert parser.parse("the numbers 6 24 look good") == []
        assert parser.parse("the judges 3 came in") == []

    def test_mid_word_book_not_matched(self, parser):
        assert parser.parse("the program 3 starts now") == []

    def test_empty(self, parser):
        assert parser.parse("") == []
        assert parser.parse("   ") == []


class TestCandidateShape:

    def test_deterministic_ceiling_confidence(self, parser):
        [c] = parser.parse("John 3:16")
        assert c.confidence == 1.0
        assert c.origin == "deterministic"
        assert c.matched_text == "John 3:16"
        assert c.rationale is None

    def test_reference_fields(self, parser):
        [c] = parser.parse("Romans 8:28-30")
        assert c.reference.book == "Romans"
        assert c.reference.chapter == 8
        assert c.reference.verse_start == 28
        assert c.reference.verse_end == 30

    def test_scan_positions(self, parser):
        [m] = parser.scan("read Jude 1:3")
        assert m.book.name == "Jude"
        assert m.match_start == 5

    def test_alias_table_loaded(self, parser):
        assert parser.alias_count > 200

    def test_module_level_helper(self):
        assert [c.reference.display for c in parse_references("Acts 2:38")] == ["Acts 2:38"]
