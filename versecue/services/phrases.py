"""Verbatim quotes of well-known verses.

A preacher often quotes "for God so loved the world" without citing John
3:16. These lines are recognizable enough to surface at high confidence,
but they are still a guess about intent, so they carry the probabilistic
origin and sit below parser hits.
"""

import re

from versecue.models.schemas import DetectionCandidate, ScriptureReference
from versecue.services.bible_books import is_valid_reference, resolve_book

PHRASE_CONFIDENCE = 0.90
MAX_PHRASE_MATCHES = 2

# (phrase, book, chapter, verse_start, verse_end)
# Phrases are stored already folded: lowercase, no punctuation.
COMMON_PHRASES: tuple[tuple[str, str, int, int, int | None], ...] = (
    # John
    ("for god so loved the world", "John", 3, 16, None),
    ("gave his only begotten son", "John", 3, 16, None),
    ("i am the way the truth and the life", "John", 14, 6, None),
    ("no one comes to the father except through me", "John", 14, 6, None),
    ("the truth will set you free", "John", 8, 32, None),
    ("the truth shall make you free", "John", 8, 32, None),
    ("i am the good shepherd", "John", 10, 11, None),
    ("i am the bread of life", "John", 6, 35, None),
    ("i am the light of the world", "John", 8, 12, None),
    ("i am the resurrection and the life", "John", 11, 25, None),
    ("in the beginning was the word", "John", 1, 1, None),
    # Psalms
    ("the lord is my shepherd", "Psalms", 23, 1, None),
    ("the valley of the shadow of death", "Psalms", 23, 4, None),
    ("thy rod and thy staff they comfort me", "Psalms", 23, 4, None),
    ("be still and know that i am god", "Psalms", 46, 10, None),
    ("create in me a clean heart", "Psalms", 51, 10, None),
    ("this is the day the lord has made", "Psalms", 118, 24, None),
    ("this is the day which the lord hath made", "Psalms", 118, 24, None),
    ("your word is a lamp to my feet", "Psalms", 119, 105, None),
    ("thy word is a lamp unto my feet", "Psalms", 119, 105, None),
    # Proverbs
    ("trust in the lord with all your heart", "Proverbs", 3, 5, 6),
    ("trust in the lord with all thine heart", "Proverbs", 3, 5, 6),
    ("lean not on your own understanding", "Proverbs", 3, 5, 6),
    ("train up a child in the way he should go", "Proverbs", 22, 6, None),
    ("as iron sharpens iron", "Proverbs", 27, 17, None),
    # Romans
    ("for all have sinned and fall short", "Romans", 3, 23, None),
    ("the wages of sin is death", "Romans", 6, 23, None),
    ("the gift of god is eternal life", "Romans", 6, 23, None),
    ("all things work together for good", "Romans", 8, 28, None),
    ("if god is for us who can be against us", "Romans", 8, 31, None),
    ("separate us from the love of god", "Romans", 8, 38, 39),
    ("do not conform to the pattern of this world", "Romans", 12, 2, None),
    ("be transformed by the renewing of your mind", "Romans", 12, 2, None),
    # Philippians
    ("i can do all things through christ", "Philippians", 4, 13, None),
    ("do not be anxious about anything", "Philippians", 4, 6, 7),
    ("the peace of god which surpasses all understanding", "Philippians", 4, 7, None),
    ("the peace of god which passeth all understanding", "Philippians", 4, 7, None),
    # Prophets
    ("for i know the plans i have for you", "Jeremiah", 29, 11, None),
    ("plans to prosper you and not to harm you", "Jeremiah", 29, 11, None),
    ("those who wait on the lord shall renew their strength", "Isaiah", 40, 31, None),
    ("they that wait upon the lord shall renew their strength", "Isaiah", 40, 31, None),
    ("mount up with wings like eagles", "Isaiah", 40, 31, None),
    ("mount up with wings as eagles", "Isaiah", 40, 31, None),
    ("fear not for i am with you", "Isaiah", 41, 10, None),
    # Matthew
    ("seek first the kingdom of god", "Matthew", 6, 33, None),
    ("ask and it will be given to you", "Matthew", 7, 7, None),
    ("knock and the door will be opened", "Matthew", 7, 7, None),
    ("come to me all you who are weary", "Matthew", 11, 28, None),
    ("come unto me all ye that labour", "Matthew", 11, 28, None),
    ("go and make disciples of all nations", "Matthew", 28, 19, 20),
    ("i am with you always", "Matthew", 28, 20, None),
    # Letters
    ("the fruit of the spirit is love joy peace", "Galatians", 5, 22, 23),
    ("by grace you have been saved through faith", "Ephesians", 2, 8, 9),
    ("by grace are ye saved through faith", "Ephesians", 2, 8, 9),
    ("put on the full armor of god", "Ephesians", 6, 11, None),
    ("put on the whole armour of god", "Ephesians", 6, 11, None),
    ("faith is the substance of things hoped for", "Hebrews", 11, 1, None),
    ("the evidence of things not seen", "Hebrews", 11, 1, None),
    ("love is patient love is kind", "1 Corinthians", 13, 4, 7),
    ("the greatest of these is love", "1 Corinthians", 13, 13, None),
    ("the greatest of these is charity", "1 Corinthians", 13, 13, None),
    ("if anyone is in christ he is a new creation", "2 Corinthians", 5, 17, None),
    ("the old has gone the new has come", "2 Corinthians", 5, 17, None),
    ("my grace is sufficient for you", "2 Corinthians", 12, 9, None),
    ("my grace is sufficient for thee", "2 Corinthians", 12, 9, None),
    ("cast all your anxiety on him", "1 Peter", 5, 7, None),
    ("faith without works is dead", "James", 2, 26, None),
    ("if we confess our sins", "1 John", 1, 9, None),
    ("he is faithful and just to forgive us", "1 John", 1, 9, None),
    # Law and history
    ("in the beginning god created", "Genesis", 1, 1, None),
    ("let there be light", "Genesis", 1, 3, None),
    ("be strong and courageous", "Joshua", 1, 9, None),
    ("be strong and of a good courage", "Joshua", 1, 9, None),
    # Revelation
    ("behold i stand at the door and knock", "Revelation", 3, 20, None),
    ("i am the alpha and the omega", "Revelation", 22, 13, None),
)

_PUNCT = re.compile(r"[^\w\s]|_")


def fold_phrase_text(text: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace ("God's" -> "gods")."""
    if not text:
        return ""
    return " ".join(_PUNCT.sub("", text.lower()).split())


def find_phrase_matches(text: str, limit: int = MAX_PHRASE_MATCHES) -> list[DetectionCandidate]:
    """Candidates for well-known verses quoted word for word in `text`.

    Matching is whole-word containment on folded text. Each reference is
    reported once, in table order, and at most `limit` are returned.
    """
    folded = f" {fold_phrase_text(text)} "
    if not folded.strip():
        return []

    found = []
    seen = set()
    for phrase, book_name, chapter, vs, ve in COMMON_PHRASES:
        if f" {phrase} " not in folded:
            continue
        book = resolve_book(book_name)
        if book is None or not is_valid_reference(book, chapter, vs, ve):
            continue
        reference = ScriptureReference(
            book=book.name, chapter=chapter, verse_start=vs, verse_end=ve,
        )
        if reference.key in seen:
            continue
        seen.add(reference.key)
        found.append(DetectionCandidate(
            reference=reference,
            confidence=PHRASE_CONFIDENCE,
            origin="probabilistic",
            rationale="verbatim phrase",
            matched_text=phrase,
        ))
        if len(found) >= limit:
            break
    return found
