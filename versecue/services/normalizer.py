"""Rewrite spoken scripture citations into parser-friendly text.

"first corinthians chapter thirteen verses four through seven"
    -> "1 corinthians 13:4-7"

Pure string rewriting; nothing here checks whether a reference exists.
"""

import re

_UNITS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9,
}
_TEENS = {
    "ten": 10, "eleven": 11, "twelve": 12, "thirteen": 13, "fourteen": 14,
    "fifteen": 15, "sixteen": 16, "seventeen": 17, "eighteen": 18, "nineteen": 19,
}
_TENS = {
    "twenty": 20, "thirty": 30, "forty": 40, "fifty": 50,
    "sixty": 60, "seventy": 70, "eighty": 80, "ninety": 90,
}

_UNIT_RE = "|".join(_UNITS)
_SMALL_RE = (
    rf"(?:(?:{'|'.join(_TENS)})(?:[\s-]+(?:{_UNIT_RE}))?"
    rf"|{'|'.join(_TEENS)}|{_UNIT_RE})"
)
_NUMBER_PHRASE = re.compile(
    rf"\b(?:(?P<hundreds>{_UNIT_RE}|a)\s+hundred(?:\s+and)?(?:\s+(?P<rest>{_SMALL_RE}))?"
    rf"|(?P<small>{_SMALL_RE}))\b",
    re.IGNORECASE,
)

# "three sixteen": two spoken numbers in a row are chapter and verse
_PHRASE_RE = (
    rf"(?:(?:{_UNIT_RE}|a)\s+hundred(?:\s+and)?(?:\s+{_SMALL_RE})?|{_SMALL_RE})"
)
_SPOKEN_PAIR = re.compile(
    rf"\b(?P<chapter>{_PHRASE_RE})\s+(?P<verse>{_PHRASE_RE})\b",
    re.IGNORECASE,
)

# Only rewritten in front of a numbered book, so "I think" is left alone
_NUMBERED_STEMS = (
    r"samuel|sam|kings|kgs|chronicles|chron|chr|corinthians?|cor|"
    r"thessalonians?|thess|thes|timothy|tim|peter|pet|john|jn|jhn"
)
_ORDINAL_PREFIXES = (
    (re.compile(rf"\b(?:first|1st|i)\s+(?=(?:{_NUMBERED_STEMS})\b)", re.IGNORECASE), "1 "),
    (re.compile(rf"\b(?:second|2nd|ii)\s+(?=(?:{_NUMBERED_STEMS})\b)", re.IGNORECASE), "2 "),
    (re.compile(rf"\b(?:third|3rd|iii)\s+(?=(?:{_NUMBERED_STEMS})\b)", re.IGNORECASE), "3 "),
)

# Common speech-to-text slips, applied only right before a chapter number
_BOOK_FIXES = (
    (r"revelations", "revelation"),
    (r"songs of solomon", "song of solomon"),
    (r"corinthian", "corinthians"),
    (r"thessalonian", "thessalonians"),
    (r"galatian", "galatians"),
    (r"ephesian", "ephesians"),
    (r"colossian", "colossians"),
    (r"phil+ip+ians", "philippians"),
    (r"ecclesiastics", "ecclesiastes"),
    (r"habakuk", "habakkuk"),
    (r"psalm", "psalms"),
    (r"proverb", "proverbs"),
    (r"roman", "romans"),
    (r"hebrew", "hebrews"),
)
_BOOK_FIX_PATTERNS = tuple(
    (re.compile(rf"\b{wrong}\b(?=\s*(?:chapter\s+)?\d)", re.IGNORECASE), right)
    for wrong, right in _BOOK_FIXES
)

_RANGE_WORDS = re.compile(r"(\d+)\s*(?:through|thru|to|until|-|–|—)\s*(\d+)", re.IGNORECASE)
_VERSES_AND = re.compile(r"\bverses\s+(\d+)\s*(?:and|&)\s*(\d+)", re.IGNORECASE)
_CHAPTER_VERSE = re.compile(
    r"\bchapter\s+(\d+)\s*,?\s*(?:and\s+)?(?:at\s+)?verses?\s+(\d+)", re.IGNORECASE
)
_CHAPTER = re.compile(r"\bchapter\s+(\d+)", re.IGNORECASE)
_TRAILING_VERSE = re.compile(r"(\d)\s*,?\s*verses?\s+(\d+)", re.IGNORECASE)
_COLON = re.compile(r"(\d)\s*:\s*(\d)")
_DASH = re.compile(r"(\d)\s*-\s*(\d)")
_SPACES = re.compile(r"\s+")


def _small_value(phrase: str) -> int:
    total = 0
    for word in re.split(r"[\s-]+", phrase.lower()):
        total += _UNITS.get(word) or _TEENS.get(word) or _TENS.get(word, 0)
    return total


def _number_to_digits(m: re.Match) -> str:
    if m.group("small"):
        return str(_small_value(m.group("small")))
    hundreds = m.group("hundreds").lower()
    value = (1 if hundreds == "a" else _UNITS[hundreds]) * 100
    if m.group("rest"):
        value += _small_value(m.group("rest"))
    return str(value)


def words_to_numbers(text: str) -> str:
    """'twenty three' -> '23', 'one hundred nineteen' -> '119'."""
    return _NUMBER_PHRASE.sub(_number_to_digits, text)


def _spoken_pair(m: re.Match) -> str:
    chapter, verse = m.group("chapter"), m.group("verse")
    # "twenty three" is one number, not chapter 20 verse 3
    if chapter.lower() in _TENS and verse.lower() in _UNITS:
        return words_to_numbers(m.group(0))
    return f"{words_to_numbers(chapter)}:{words_to_numbers(verse)}"


def normalize_reference_text(text: str) -> str:
    """Normalize a transcript fragment so literal citations can be matched."""
    if not text:
        return ""
    out = words_to_numbers(_SPOKEN_PAIR.sub(_spoken_pair, text))

    for pattern, replacement in _ORDINAL_PREFIXES:
        out = pattern.sub(replacement, out)
    for pattern, replacement in _BOOK_FIX_PATTERNS:
        out = pattern.sub(replacement, out)

    out = _RANGE_WORDS.sub(r"\1-\2", out)
    out = _VERSES_AND.sub(r"verses \1-\2", out)
    out = _CHAPTER_VERSE.sub(r"\1:\2", out)
    out = _CHAPTER.sub(r"\1", out)
    out = _TRAILING_VERSE.sub(r"\1:\2", out)

    out = _COLON.sub(r"\1:\2", out)
    out = _DASH.sub(r"\1-\2", out)
    return _SPACES.sub(" ", out).strip()
