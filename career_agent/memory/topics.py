"""Career topic tagging for memory items."""

from __future__ import annotations

import re
from typing import Dict, List, Tuple

TOPIC_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("resume", ("resume", "cv", "ats", "cover letter")),
    ("interview", ("interview", "star method", "behavioral", "mock interview")),
    ("career_planning", ("career plan", "career change", "career goals", "transition", "promotion")),
    ("job_search", ("job search", "job board", "linkedin", "networking", "apply", "application")),
    ("skills", ("skill", "certification", "course", "learning")),
    ("salary", ("salary", "compensation", "negotiat", "offer")),
)

_PATTERNS: Dict[str, List["re.Pattern[str]"]] = {
    topic: [re.compile(r"\b" + re.escape(keyword)) for keyword in keywords]
    for topic, keywords in TOPIC_KEYWORDS
}


def extract_topics(text: str) -> List[str]:
    """Topics mentioned in ``text``, in table order."""
    lowered = (text or "").lower()
    return [topic for topic, patterns in _PATTERNS.items() if any(p.search(lowered) for p in patterns)]
