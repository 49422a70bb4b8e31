"""
Scripture Reference Grammar

Parses references of the form::

    Book Chapter[:Verse[-Verse][, Verse[-Verse]]*][; Chapter[:...]]*
    Book Chapter-Chapter

Book names may carry a numeric prefix ("1 Cor", "2John") and may be written
in non-Latin scripts. Latin book names are checked against the canonical
book list and its common abbreviations; non-Latin names are accepted on
shape alone and resolved later by the Bible text lookup.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import List, Optional, Tuple


MAX_CHAPTER = 150
MAX_VERSE = 176

_NUMBER = re.compile(r"\d{1,3}")
_DASHES = ("-", "–", "—")
_SPLIT = re.compile(r"^(?P<book>.+?)\s*(?P<locator>\d[\d\s:,;\-–—]*)$")

_BOOK_NAMES = (
    # Old Testament
    "genesis gen ge gn",
    "exodus exod exo ex",
    "leviticus lev le lv",
    "numbers num nu nm nb",
    "deuteronomy deut dt",
    "joshua josh jos jsh",
    "judges judg jdg jg jdgs",
    "ruth rth ru",
    "1samuel 1sam 1sa 1s",
    "2samuel 2sam 2sa 2s",
    "1kings 1kgs 1ki 1k",
    "2kings 2kgs 2ki 2k",
    "1chronicles 1chr 1ch",
    "2chronicles 2chr 2ch",
    "ezra ezr",
    "nehemiah neh ne",
    "esther esth es",
    "job jb",
    "psalms psalm ps psa psm pss",
    "proverbs prov pr prv",
    "ecclesiastes eccl ec ecc",
    "songofsolomon songofsongs song sos",
    "isaiah isa is",
    "jeremiah jer je jr",
    "lamentations lam la",
    "ezekiel ezek eze ezk",
    "daniel dan da dn",
    "hosea hos ho",
    "joel joe jl",
    "amos am",
    "obadiah obad ob",
    "jonah jnh jon",
    "micah mic mc",
    "nahum nah na",
    "habakkuk hab hb",
    "zephaniah zeph zep zp",
    "haggai hag hg",
    "zechariah zech zec zc",
    "malachi mal ml",
    # New Testament
    "matthew matt mt",
    "mark mk mr",
    "luke lk luk",
    "john jn joh",
    "acts ac",
    "romans rom ro rm",
    "1corinthians 1cor 1co",
    "2corinthians 2cor 2co",
    "galatians gal ga",
    "ephesians eph ep",
    "philippians phil php pp",
    "colossians col",
    "1thessalonians 1thess 1th 1ts",
    "2thessalonians 2thess 2th 2ts",
    "1timothy 1tim 1ti 1tm",
    "2timothy 2tim 2ti 2tm",
    "titus tit",
    "philemon phlm phm pm",
    "hebrews heb he",
    "james jas jm",
    "1peter 1pet 1pe 1pt 1p",
    "2peter 2pet 2pe 2pt 2p",
    "1john 1jn 1jo 1j",
    "2john 2jn 2jo 2j",
    "3john 3jn 3jo 3j",
    "jude jud jd",
    "revelation rev re rv",
)

KNOWN_BOOKS = frozenset(name for line in _BOOK_NAMES for name in line.split())


class ReferenceFormatError(ValueError):
    """Raised when a string does not follow the reference grammar."""


@dataclass(frozen=True)
class ChapterSegment:
    chapter: int
    end_chapter: Optional[int] = None
    verses: Tuple[Tuple[int, Optional[int]], ...] = ()


@dataclass(frozen=True)
class ScriptureReference:
    book: str
    segments: Tuple[ChapterSegment, ...]
    non_latin_book: bool = False


def normalize_book(book: str) -> str:
    """Lower-case, drop dots and whitespace: "1 Cor." -> "1cor"."""
    return re.sub(r"[\s.]+", "", book.lower())


def _is_book_char(ch: str) -> bool:
    category = unicodedata.category(ch)
    return category[0] in ("L", "M") or ch in " ."


def _check_book_shape(book: str) -> None:
    body = book
    if body[:1] in ("1", "2", "3"):
        body = body[1:].lstrip()
    if not body or not _is_book_char(body[0]) or body[0] in " .":
        raise ReferenceFormatError("book name must start with a letter")
    if not all(_is_book_char(ch) for ch in body):
        raise ReferenceFormatError("book name contains invalid characters")


def _parse_number(text: str, limit: int, label: str) -> int:
    text = text.strip()
    if not _NUMBER.fullmatch(text):
        raise ReferenceFormatError(f"{label} must be a number")
    value = int(text)
    if value < 1 or value > limit:
        raise ReferenceFormatError(f"{label} {value} is outside 1-{limit}")
    return value


def _split_range(text: str) -> List[str]:
    for dash in _DASHES[1:]:
        text = text.replace(dash, "-")
    return text.split("-")


def _parse_verse_span(text: str) -> Tuple[int, Optional[int]]:
    parts = _split_range(text)
    if len(parts) > 2:
        raise ReferenceFormatError("verse range has too many parts")
    start = _parse_number(parts[0], MAX_VERSE, "verse")
    if len(parts) == 1:
        return start, None
    end = _parse_number(parts[1], MAX_VERSE, "verse")
    if end <= start:
        raise ReferenceFormatError("end verse must be greater than start verse")
    return start, end


def _parse_segment(text: str) -> ChapterSegment:
    if ":" in text:
        chapter_text, verse_text = text.split(":", 1)
        chapter = _parse_number(chapter_text, MAX_CHAPTER, "chapter")
        spans = tuple(_parse_verse_span(part) for part in verse_text.split(","))
        return ChapterSegment(chapter=chapter, verses=spans)

    if "," in text:
        raise ReferenceFormatError("verse list requires a chapter and colon")

    parts = _split_range(text)
    if len(parts) > 2:
        raise ReferenceFormatError("chapter range has too many parts")
    chapter = _parse_number(parts[0], MAX_CHAPTER, "chapter")
    if len(parts) == 1:
        return ChapterSegment(chapter=chapter)
    end_chapter = _parse_number(parts[1], MAX_CHAPTER, "chapter")
    if end_chapter <= chapter:
        raise ReferenceFormatError("end chapter must be greater than start chapter")
    return ChapterSegment(chapter=chapter, end_chapter=end_chapter)


def parse_reference(text: str) -> ScriptureReference:
    """
    Parse a scripture reference.

    Raises
    ------
    ReferenceFormatError
        With a short human-readable reason when the text does not conform.
    """
    match = _SPLIT.match(text.strip())
    if not match:
        raise ReferenceFormatError("expected 'Book Chapter[:Verse]'")

    book = match.group("book").strip()
    _check_book_shape(book)

    non_latin = not book.isascii()
    if not non_latin and normalize_book(book) not in KNOWN_BOOKS:
        raise ReferenceFormatError(f"unknown book '{book}'")

    locator = match.group("locator").strip()
    segments = tuple(_parse_segment(part) for part in locator.split(";"))

    return ScriptureReference(book=book, segments=segments, non_latin_book=non_latin)
