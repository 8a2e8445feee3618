"""Fast scripture citation detection via regex (CPU, no I/O)."""

import re
from dataclasses import dataclass

from versecue.models.schemas import DetectionCandidate, ScriptureReference
from versecue.services.bible_books import (
    BookDefinition,
    is_valid_reference,
    lookup_aliases,
)
from versecue.services.normalizer import normalize_reference_text

# Aliases that are ordinary English words or too short to trust mid-sentence.
# resolve_book() still accepts them; the scanner just never anchors on them.
_UNSAFE_ALIASES = frozenset({
    "song", "act", "pro", "joe", "jam", "mar", "kin", "jon", "tit", "num",
    "col", "dan", "hag", "mic", "gal", "sam", "lam", "hab", "est", "exo",
})
# Book names that double as first names or ordinary nouns: a bare chapter
# is not enough
_NEEDS_VERSE = frozenset({
    "mark", "job", "john", "james", "jude", "ruth", "titus", "acts", "amos",
    "joel", "daniel", "luke", "micah", "jonah", "esther", "nahum",
    "numbers", "judges",
})


@dataclass
class ReferenceMatch:
    book: BookDefinition
    chapter: int
    verse_start: int | None
    verse_end: int | None
    match_start: int = 0
    match_end: int = 0
    matched_text: str = ""


def _alias_pattern(alias: str) -> str:
    return r"\s*".join(re.escape(part) for part in alias.split(" ")) if alias[0].isdigit() \
        else r"\s+".join(re.escape(part) for part in alias.split(" "))


class ReferenceParser:
    """Scans transcript fragments for literal and spelled-out citations.

    The fragment is normalized first ("chapter three verse sixteen" -> "3:16"),
    then matched against one compiled pattern built from the alias table.
    A verse is only read after a colon, so "Psalm 23 10 times" stays a
    chapter citation.
    Every match is bounds-checked; invalid ones are dropped, never downgraded.
    parse() is pure and synchronous, so it is cheap enough for every fragment.
    """

    def __init__(self):
        self._books: dict[str, BookDefinition] = {}
        for alias, book in lookup_aliases().items():
            bare = alias.replace(" ", "")
            if alias in _UNSAFE_ALIASES:
                continue
            if not alias[0].isdigit() and len(bare) <= 2:
                continue
            self._books[alias] = book

        # Longest first so "1 corinthians" wins over "corinthians"
        ordered = sorted(self._books, key=len, reverse=True)
        alternation = "|".join(_alias_pattern(a) for a in ordered)
        self._pattern = re.compile(
            rf"(?<![\w])(?P<book>{alternation})\.?\s*"
            r"(?P<chapter>\d{1,3})"
            r"(?:\s*:\s*(?P<vs>\d{1,3})(?:\s*-\s*(?P<ve>\d{1,3}))?)?"
            r"(?![\d:])",
            re.IGNORECASE,
        )

    def _book_for(self, matched: str) -> BookDefinition | None:
        key = re.sub(r"\s+", " ", matched.lower()).strip()
        book = self._books.get(key)
        if book is None:
            # "1cor" written without the space
            book = self._books.get(re.sub(r"^(\d)\s*", r"\1 ", key))
        return book

    def scan(self, text: str) -> list[ReferenceMatch]:
        """Return validated matches in order of appearance, deduplicated."""
        if not text or not text.strip():
            return []
        normalized = normalize_reference_text(text)
        matches = []
        seen = set()

        for m in self._pattern.finditer(normalized):
            book = self._book_for(m.group("book"))
            if book is None:
                continue
            chapter = int(m.group("chapter"))
            vs = int(m.group("vs")) if m.group("vs") else None
            ve = int(m.group("ve")) if m.group("ve") else None
            if ve is not None and ve == vs:
                ve = None
            alias = re.sub(r"\s+", " ", m.group("book").lower())
            if alias in _NEEDS_VERSE and vs is None:
                continue
            if not is_valid_reference(book, chapter, vs, ve):
                continue

            identity = (book.name, chapter, vs, ve)
            if identity in seen:
                continue
            seen.add(identity)
            matches.append(ReferenceMatch(
                book=book,
                chapter=chapter,
                verse_start=vs,
                verse_end=ve,
                match_start=m.start(),
                match_end=m.end(),
                matched_text=m.group(0).strip(),
            ))

        return matches

    def parse(self, text: str) -> list[DetectionCandidate]:
        """Scan text and wrap each match as a ceiling-confidence candidate."""
        return [
            DetectionCandidate(
                reference=ScriptureReference(
                    book=rm.book.name,
                    chapter=rm.chapter,
                    verse_start=rm.verse_start,
                    verse_end=rm.verse_end,
                ),
                confidence=1.0,
                origin="deterministic",
                matched_text=rm.matched_text,
            )
            for rm in self.scan(text)
        ]

    @property
    def alias_count(self) -> int:
        return len(self._books)


_default_parser: ReferenceParser | None = None


def parse_references(text: str) -> list[DetectionCandidate]:
    """Module-level convenience using a shared parser instance."""
    global _default_parser
    if _default_parser is None:
        _default_parser = ReferenceParser()
    return _default_parser.parse(text)
