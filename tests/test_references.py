import pytest

from study_guide_server.guard.references import (
    ChapterSegment,
    ReferenceFormatError,
    normalize_book,
    parse_reference,
)


def test_single_verse():
    ref = parse_reference("John 3:16")
    assert ref.book == "John"
    assert ref.segments == (ChapterSegment(chapter=3, verses=((16, None),)),)
    assert not ref.non_latin_book


def test_verse_range_and_list():
    ref = parse_reference("John 3:16-18, 21")
    assert ref.segments[0].verses == ((16, 18), (21, None))


def test_multiple_chapters_separated_by_semicolon():
    ref = parse_reference("Romans 8:28; 12:1-2")
    assert [s.chapter for s in ref.segments] == [8, 12]


def test_chapter_range():
    ref = parse_reference("Genesis 1-3")
    assert ref.segments == (ChapterSegment(chapter=1, end_chapter=3),)


def test_en_dash_range():
    ref = parse_reference("Matthew 5:3–12")
    assert ref.segments[0].verses == ((3, 12),)


@pytest.mark.parametrize("reference", ["1 Cor 13:4", "1Cor 13:4", "1 Corinthians 13:4", "2 Tim. 3:16"])
def test_numbered_books(reference):
    assert parse_reference(reference).segments[0].chapter in (3, 13)


def test_non_latin_book_accepted_on_shape():
    ref = parse_reference("यूहन्ना 3:16")
    assert ref.non_latin_book
    assert ref.book == "यूहन्ना"


def test_normalize_book():
    assert normalize_book("1 Cor.") == "1cor"
    assert normalize_book("Song of Solomon") == "songofsolomon"


@pytest.mark.parametrize(
    "reference, reason",
    [
        ("John", "expected"),
        ("Hezekiah 3:1", "unknown book"),
        ("John 0:1", "outside"),
        ("John 3:177", "outside"),
        ("Psalm 151", "outside"),
        ("John 3:18-16", "greater than"),
        ("Genesis 3-1", "greater than"),
        ("John 3, 4", "colon"),
        ("3:16", "must start with a letter"),
        ("John$ 3:16", "invalid characters"),
    ],
)
def test_rejections_carry_reason(reference, reason):
    with pytest.raises(ReferenceFormatError) as exc_info:
        parse_reference(reference)
    assert reason in str(exc_info.value)
