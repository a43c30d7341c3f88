import re
from typing import Dict, List, Optional, Tuple

from ..safety.verdicts import HeuristicVerdict, merge_flags

PROMO_PENALTY = 30
URL_SPAM_PENALTY = 45
PERSONAL_INFO_PENALTY = 15
RELEVANCE_PENALTY = 10
TOO_SHORT_PENALTY = 10

URL_SPAM_MIN_DISTINCT = 3

PROMO_RE = re.compile(
    r"\b(buy\s+now|click\s+here|limited\s+time|act\s+now|free\s+money|free\s+cash|"
    r"make\s+money\s+fast|guaranteed\s+income|earn\s+\$?\d+\s*(?:per|a)\s+(?:day|week|hour)|"
    r"work\s+from\s+home|risk[\s-]+free|order\s+now|100%\s+free)",
    re.I,
)
URL_RE = re.compile(r"(?:https?://|www\.)[^\s<>\"']+", re.I)
PHONE_RE = re.compile(r"(?<!\w)(?:\+\d{1,3}[\s.-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}(?!\w)")
EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

TOPIC_KEYWORDS: Dict[str, List[str]] = {
    "lost-found": [
        "found", "lost", "item", "backpack", "bag", "phone", "wallet", "keys", "card",
        "library", "campus", "contact", "missing", "laptop", "bottle",
    ],
    "event": [
        "event", "meeting", "conference", "workshop", "seminar", "date", "time", "location",
        "join", "attend", "register", "venue", "club", "fest",
    ],
    "academic": [
        "resource", "study", "course", "material", "notes", "textbook", "academic",
        "education", "lecture", "exam", "syllabus", "assignment", "semester", "tutorial",
    ],
}


def normalize_topic(topic: Optional[str]) -> str:
    t = (topic or "").strip().lower()
    if "lost" in t or "found" in t:
        return "lost-found"
    if "event" in t:
        return "event"
    if "academic" in t or "resource" in t:
        return "academic"
    return "generic"


def _distinct_urls(text: str) -> int:
    return len({u.rstrip(".,;:!?)").lower() for u in URL_RE.findall(text)})


def _is_relevant(topic: str, text: str) -> bool:
    keywords = TOPIC_KEYWORDS.get(topic)
    if not keywords:
        return True
    return any(re.search(r"\b" + re.escape(k), text) for k in keywords)


def score(
    topic: Optional[str],
    title: Optional[str],
    content: str,
    *,
    min_score: int = 35,
    min_content_chars: int = 10,
) -> HeuristicVerdict:
    """Score a submission for spam, personal info, topic relevance and minimum content.

    Starts from 100 and subtracts a fixed penalty per detected category. Relevance and
    length are advisory; only spam is a hard veto (see ``HeuristicVerdict.is_authentic``).
    """
    body = content or ""
    full_text = (f"{title} {body}" if title else body).lower()
    norm_topic = normalize_topic(topic)

    penalties: List[Tuple[str, int]] = []

    if PROMO_RE.search(full_text):
        penalties.append(("spam", PROMO_PENALTY))
    if _distinct_urls(full_text) >= URL_SPAM_MIN_DISTINCT:
        penalties.append(("spam", URL_SPAM_PENALTY))

    # Contact details are only checked in the body; URLs are stripped so their digits don't count
    body_no_urls = URL_RE.sub(" ", body)
    if PHONE_RE.search(body_no_urls) or EMAIL_RE.search(body_no_urls):
        penalties.append(("personal_info", PERSONAL_INFO_PENALTY))

    relevant = _is_relevant(norm_topic, full_text)
    if not relevant:
        penalties.append(("not_relevant", RELEVANCE_PENALTY))

    if len(body.strip()) < min_content_chars:
        penalties.append(("too_short", TOO_SHORT_PENALTY))

    total = 100 - sum(p for _, p in penalties)
    return HeuristicVerdict(
        score=max(0, min(100, total)),
        is_relevant=relevant,
        flags=merge_flags(f for f, _ in penalties),
        topic=norm_topic,
        min_score=min_score,
    )
