from __future__ import annotations

import json
import logging
import re
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Pattern, Tuple, Union

from .verdicts import RuleReason, RuleVerdict

logger = logging.getLogger(__name__)

SEVERE_FLAGS = ("hate_speech", "severe_language")
THREAT_FLAGS = ("threat", "violent_content")

SEVERE_MESSAGE = "Contains profanity or inappropriate language"
THREAT_MESSAGE = "Contains threats or violent language"

# Whole-token boundaries that also hold around symbols such as "*" or "@"
_LEFT = r"(?<!\w)"
_RIGHT = r"(?!\w)"


def normalize_text(s: str) -> str:
    s = unicodedata.normalize("NFKC", s or "")
    s = s.replace("\u200b", "").replace("\u200c", "").replace("\u200d", "").replace("\ufeff", "")
    return s.lower()


def _term_regex(term: str, stem: bool = False) -> str:
    body = r"\s+".join(re.escape(p) for p in term.split())
    return _LEFT + body + (r"\w*" if stem else _RIGHT)


def _fragment_regex(fragment: str) -> str:
    return _LEFT + "(?:" + fragment + ")" + _RIGHT


@dataclass(frozen=True)
class RuleTable:
    """Compiled, read-only term table.

    ``severe`` holds (language, display term, compiled pattern) in table order so
    the first match wins deterministically.
    """

    version: str
    severe: Tuple[Tuple[str, str, Pattern[str]], ...]
    threats: Tuple[Pattern[str], ...]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleTable":
        languages = data.get("languages")
        if not isinstance(languages, dict):
            raise ValueError("rule table must contain a 'languages' object")

        severe: List[Tuple[str, str, Pattern[str]]] = []
        seen = set()
        for lang, block in languages.items():
            block = block or {}
            entries = (
                [(t, _term_regex(normalize_text(t))) for t in block.get("terms") or []]
                + [(t, _term_regex(normalize_text(t), stem=True)) for t in block.get("stems") or []]
                + [(f, _fragment_regex(f)) for f in block.get("patterns") or []]
            )
            for display, rx in entries:
                display = normalize_text(display).strip()
                if not display or (lang, rx) in seen:
                    continue
                seen.add((lang, rx))
                severe.append((lang, display, re.compile(rx)))

        threats = tuple(re.compile(p, re.I) for p in data.get("threat_patterns") or [])
        return cls(version=str(data.get("version", "unversioned")), severe=tuple(severe), threats=threats)


def load_rule_table(path: Union[str, Path]) -> RuleTable:
    """Load and compile a term table asset. Raises on a missing or invalid file."""
    p = Path(path)
    with p.open("r", encoding="utf-8") as f:
        data = json.load(f)
    table = RuleTable.from_dict(data)
    logger.info(
        "Loaded rule table %s (version=%s, severe=%d, threats=%d)",
        p.name, table.version, len(table.severe), len(table.threats),
    )
    return table


class RuleScanner:
    """Deterministic first-stage scan for severe language and explicit threats."""

    def __init__(self, table: RuleTable):
        self.table = table

    def scan(self, title: Optional[str], content: str) -> RuleVerdict:
        text = normalize_text(f"{title} {content}" if title else content)

        for lang, term, rx in self.table.severe:
            if rx.search(text):
                return RuleVerdict(
                    triggered=True,
                    reason_code=RuleReason.SEVERE_LANGUAGE,
                    matched_term=f"{lang}:{term}",
                    flags=SEVERE_FLAGS,
                    message=SEVERE_MESSAGE,
                )

        for rx in self.table.threats:
            m = rx.search(text)
            if m:
                return RuleVerdict(
                    triggered=True,
                    reason_code=RuleReason.THREAT,
                    matched_term=m.group(0),
                    flags=THREAT_FLAGS,
                    message=THREAT_MESSAGE,
                )

        return RuleVerdict.clean()
