"""FAQ cache for instant answers to the suggested questions.

An entry fires only when the query contains at least one of its primary
keywords AND at least one of its supporting keywords. The second gate keeps a
lone ambiguous word ("sport", "fees") from hijacking unrelated questions, at
the cost of missing terse phrasings such as "fees?" which then fall through to
retrieval.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from beri.models import FAQEntry, MessageSource

LOGGER = logging.getLogger(__name__)

SUGGESTED_QUESTIONS = [
    "What are the school fees?",
    "How do I apply for 11+ entry?",
    "What A-Level subjects are offered?",
    "What sports are available?",
]

DEFAULT_FAQ_ENTRIES: Tuple[FAQEntry, ...] = (
    FAQEntry(
        primary=("fees", "fee", "cost", "how much"),
        supporting=("school", "term", "year", "habs", "tuition", "pay", "annual", "per"),
        answer=(
            "Tuition fees for 2025-26 (including 20% VAT):\n"
            "• Pre-Prep (Reception–Year 2): £8,413/term (£25,239/year)\n"
            "• Prep (Years 3–6): £9,849/term (£29,547/year)\n"
            "• Senior School (Years 7–11): £10,423/term (£31,269/year)\n"
            "• Sixth Form (Years 12–13): £10,423/term (£31,269/year)\n\n"
            "Fees include stationery, textbooks, and insurance. Prep fees include lunch.\n"
            "Additional charges: devices £125/term (Y7+), senior lunch £5.25/day.\n\n"
            "Source: Fees and Financial Support — Tuition Fees 2025-26"
        ),
        sources=(MessageSource("Fees and Financial Support", "Tuition Fees 2025-26"),),
    ),
    FAQEntry(
        primary=("11+", "eleven plus", "year 7 entry"),
        supporting=(
            "apply", "entry", "exam", "test", "how", "process",
            "date", "when", "deadline", "admission",
        ),
        answer=(
            "11+ Year 7 Entry (2025-26):\n"
            "• Registration deadline: Thursday 6 November 2025\n"
            "• First round assessment: Tuesday 18 & Friday 21 November 2025\n"
            "• ~100 external places available\n"
            "• Online adaptive tests: Maths (20 min), Non-Verbal Reasoning (10 min), "
            "Verbal Reasoning (10 min), Puzzles (15 min), English (50 min)\n"
            "• Handwritten creative writing (30 min)\n"
            "• Based on Key Stage 2 National Curriculum — no tutoring needed\n"
            "• ~50% of first-round candidates invited for second-round interview\n"
            "• Offers posted: Thursday 12 February 2026\n\n"
            "Contact: admissionsboys@habselstree.org.uk\n\n"
            "Source: Admissions — 11+ Year 7 Entry"
        ),
        sources=(MessageSource("Admissions", "11+ Year 7 Entry"),),
    ),
    FAQEntry(
        primary=("a-level", "a level", "a levels", "alevel"),
        supporting=(
            "subject", "offer", "available", "choice", "choose",
            "option", "what", "which", "list",
        ),
        answer=(
            "A-Level subjects offered (choose 3-4 over 2 years):\n"
            "Art, Biology, Chemistry, Classical Civilisation*, Classical Greek, "
            "Computer Science*, Design & Technology, Drama*, Economics, English Language, "
            "English Literature, French, Further Maths, Geography*, German, History*, Latin, "
            "Maths, Music, PE*, Philosophy, Physics, Politics, Psychology*, "
            "Religious Studies*, Spanish\n\n"
            "*Can study without prior GCSE\n"
            "At least 1 subject taught in mixed-gender classes with Habs Girls.\n"
            "Entry requirement: 9 GCSEs including Maths and English.\n\n"
            "Source: Sixth Form — A-Level Programme"
        ),
        sources=(MessageSource("Sixth Form (Years 12-13, Ages 16-18)", "A-Level Programme"),),
    ),
    FAQEntry(
        primary=("sport", "sports"),
        supporting=("what", "available", "offer", "play", "do", "habs", "school"),
        answer=(
            "Sport at Habs:\n"
            "• ~160 co-curricular sports activities beyond the timetable\n"
            "• All students encouraged to participate — competitive, recreational, or social\n"
            "• Up to 6 teams per age group in weekly competitive action\n\n"
            "Seasonal focus:\n"
            "• Autumn: Football, Rugby\n"
            "• Spring: Hockey\n"
            "• Summer: Cricket\n\n"
            "High-performance coaching in cricket, football, hockey, rugby, water polo, and "
            "swimming, led by professional sportspeople.\n\n"
            "Source: Sport and Co-Curricular — Sport Overview"
        ),
        sources=(
            MessageSource("Sport and Co-Curricular", "Sport Overview"),
            MessageSource("Sport and Co-Curricular", "High-Performance Sport"),
        ),
    ),
)


def matches(entry: FAQEntry, query: str) -> bool:
    """Dual-keyword gate for a single entry."""
    lower_query = query.lower()
    if not any(keyword in lower_query for keyword in entry.primary):
        return False
    return any(keyword in lower_query for keyword in entry.supporting)


class FAQCache:
    """Pure lookup over a static table of FAQ entries."""

    def __init__(self, entries: Sequence[FAQEntry] = DEFAULT_FAQ_ENTRIES) -> None:
        self.entries: Tuple[FAQEntry, ...] = tuple(entries)

    def lookup(self, query: str) -> Optional[FAQEntry]:
        for entry in self.entries:
            if matches(entry, query):
                LOGGER.info("FAQ cache hit for query: %s", query)
                return entry
        return None


_DEFAULT_CACHE = FAQCache()


def get_faq_response(query: str) -> Optional[Tuple[str, List[MessageSource]]]:
    """Answer and citations of the first matching default entry, if any."""
    entry = _DEFAULT_CACHE.lookup(query)
    if entry is None:
        return None
    return entry.answer, list(entry.sources)
