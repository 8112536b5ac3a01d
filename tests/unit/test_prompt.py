"""Tests for document labels and prompt assembly."""
import pytest

from handbook_qa.rag.models import RetrievedChunk
from handbook_qa.rag.prompt import HandbookNameNormalizer, build_prompt, format_context


@pytest.fixture
def normalize():
    return HandbookNameNormalizer(prefix="LincolnHandbook")


@pytest.mark.parametrize(
    "raw, label",
    [
        (
            "LincolnHandbook2025HighSchoolEnglish1755706408612_8FBfTt",
            "High School Handbook (English)",
        ),
        ("LincolnHandbook2024ElementarySpanish17000_x", "Elementary Handbook (Spanish)"),
        ("LincolnHandbook2025MiddleSchoolEnglish", "Middle School Handbook (English)"),
        ("lincolnhandbook2025highschoolspanish99", "High School Handbook (Spanish)"),
    ],
)
def test_generated_names_become_readable_labels(normalize, raw, label):
    assert normalize(raw) == label


def test_unrecognised_names_pass_through(normalize):
    assert normalize("District Calendar") == "District Calendar"
    assert normalize("") == ""


def test_partial_match_is_left_unchanged(normalize):
    # Year present but level missing
    assert normalize("LincolnHandbook2025English") == "LincolnHandbook2025English"
    # Unknown language
    assert normalize("LincolnHandbook2025HighSchoolFrench") == "LincolnHandbook2025HighSchoolFrench"


def test_normalizing_twice_is_stable(normalize):
    once = normalize("LincolnHandbook2025HighSchoolEnglish1755706408612_8FBfTt")
    assert normalize(once) == once


def test_context_blocks_are_numbered_in_order(normalize):
    chunks = [
        RetrievedChunk("LincolnHandbook2025HighSchoolEnglish1", 12, "Phones off.", 0.82),
        RetrievedChunk("Other", 3, "Second passage.", 0.7),
    ]

    context = format_context(chunks, normalize)

    assert context == (
        '[1] (High School Handbook (English), p.12)\n"Phones off."'
        "\n\n"
        '[2] (Other, p.3)\n"Second passage."'
    )


def test_prompt_has_context_then_question(normalize):
    chunks = [RetrievedChunk("doc", 1, "Text.", 0.5)]

    prompt = build_prompt(chunks, "What time is lunch?", normalize)

    assert prompt.startswith("CONTEXT:\n[1] (doc, p.1)")
    assert prompt.endswith("\n\nQUESTION:\nWhat time is lunch?")
