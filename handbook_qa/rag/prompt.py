"""Prompt construction: numbered, source-labelled context plus the question."""
import re
from typing import Callable, List, Sequence

from handbook_qa import config
from handbook_qa.rag.models import RetrievedChunk

# Raw document identifier -> display label
DocNameNormalizer = Callable[[str], str]

LEVEL_LABELS = {
    "elementary": "Elementary",
    "middleschool": "Middle School",
    "highschool": "High School",
}


class HandbookNameNormalizer:
    """Turns generated handbook filenames into readable labels.

    ``LincolnHandbook2025HighSchoolEnglish1755706408612_8FBfTt`` becomes
    ``High School Handbook (English)``. Anything that does not carry a known
    grade level and language right after the prefix and year is returned
    unchanged, so labels that were already normalized stay as they are.
    """

    def __init__(self, prefix: str = None):
        self.prefix = prefix or config.HANDBOOK_PREFIX
        self.pattern = re.compile(
            re.escape(self.prefix)
            + r"\d{4}(Elementary|MiddleSchool|HighSchool)(English|Spanish)",
            re.IGNORECASE,
        )

    def __call__(self, doc_name: str) -> str:
        match = self.pattern.search(doc_name)
        if not match:
            return doc_name

        level = LEVEL_LABELS[match.group(1).lower()]
        language = match.group(2).capitalize()
        return f"{level} Handbook ({language})"


def format_context(
    chunks: Sequence[RetrievedChunk],
    normalize: DocNameNormalizer,
) -> str:
    """Render chunks as ``[i] (label, p.N)`` blocks separated by blank lines."""
    parts: List[str] = []
    for index, chunk in enumerate(chunks, 1):
        label = normalize(chunk.source_document)
        parts.append(f'[{index}] ({label}, p.{chunk.page_number})\n"{chunk.content}"')
    return "\n\n".join(parts)


def build_prompt(
    chunks: Sequence[RetrievedChunk],
    question: str,
    normalize: DocNameNormalizer = None,
) -> str:
    """Build the user prompt for grounded answering.

    Args:
        chunks: Retrieved chunks, in the order they should be cited
        question: The user's question
        normalize: Document label policy (default: HandbookNameNormalizer)

    Returns:
        Prompt with a CONTEXT section followed by a QUESTION section
    """
    normalize = normalize or HandbookNameNormalizer()
    context = format_context(chunks, normalize)
    return f"CONTEXT:\n{context}\n\nQUESTION:\n{question}"
