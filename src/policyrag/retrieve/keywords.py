"""Deterministic keyword extraction and tokenization.

Used by the text-search and reference-set retrieval strategies; no
embedder or language model needed.
"""

from __future__ import annotations

import logging
import re

__all__ = ["STOPWORDS", "extract_keywords", "tokenize"]

logger = logging.getLogger(__name__)

_MIN_WORD_CHARS = 3

# Word tokens: letters (umlauts included), optionally hyphenated.
_WORD_RE = re.compile(r"[^\W\d_][\w-]*")

# Paragraph references: "§ 433", "§§ 823", "Art. 5", "Artikel 1", "433 BGB".
_PARAGRAPH_RES: tuple[re.Pattern[str], ...] = (
    re.compile(r"§§?\s*(\d+[a-z]?)"),
    re.compile(r"\bArt(?:ikel|\.)?\s*(\d+[a-z]?)", re.IGNORECASE),
    re.compile(r"\b(\d+[a-z]?)\s+(BGB|StGB|VVG|GG|HGB|ZPO|SGB|KSchG|StVG|PflVG)\b"),
)

STOPWORDS: frozenset[str] = frozenset(
    {
        # German
        "der", "die", "das", "den", "dem", "des", "ein", "eine", "einer", "eines",
        "einem", "einen", "und", "oder", "aber", "nicht", "mit", "von", "für",
        "auf", "aus", "bei", "nach", "über", "unter", "vor", "zum", "zur", "ist",
        "sind", "war", "wird", "werden", "wurde", "hat", "haben", "kann", "können",
        "muss", "müssen", "soll", "sollte", "darf", "wenn", "wie", "was", "wer",
        "welche", "welcher", "welches", "wann", "warum", "wo", "sich", "ich",
        "mein", "meine", "mir", "mich", "sie", "ihr", "ihre", "wir", "uns",
        "auch", "noch", "nur", "schon", "sehr", "mehr", "als", "dass", "durch",
        "gegen", "ohne", "bis", "zwischen", "diese", "dieser", "dieses", "gibt",
        "bitte", "habe", "gilt", "art", "artikel",
        # English
        "the", "and", "for", "are", "but", "not", "you", "all", "can", "has",
        "how", "its", "may", "what", "which", "who", "when", "where", "why",
        "with", "this", "that", "from", "they", "have", "will", "does", "must",
        "should", "could", "would", "about", "there", "their", "into", "than",
        "then", "some", "any", "our", "your",
    }
)


def _paragraph_refs(text: str) -> list[str]:
    refs: list[str] = []
    for pattern in _PARAGRAPH_RES:
        for match in pattern.finditer(text):
            if pattern.groups == 2:
                refs.append(f"{match.group(1)} {match.group(2)}")
            elif match.group(0).startswith("§"):
                refs.append(f"§ {match.group(1)}")
            else:
                refs.append(f"Art. {match.group(1)}")
    return refs


def tokenize(text: str) -> set[str]:
    """Unique lowercase, stopword-filtered word tokens of at least 3 characters."""
    if not text:
        return set()
    return {
        w
        for w in _WORD_RE.findall(text.lower())
        if len(w) >= _MIN_WORD_CHARS and w not in STOPWORDS
    }


def extract_keywords(text: str, max_keywords: int = 5) -> list[str]:
    """Pick salient search terms from a question.

    Paragraph references come first, in order of appearance; then
    stopword-filtered words ordered longest first. Duplicates are removed
    case-insensitively and the original casing is kept.
    """
    if not text or max_keywords < 1:
        return []

    words = [
        w
        for w in _WORD_RE.findall(text)
        if len(w) >= _MIN_WORD_CHARS and w.lower() not in STOPWORDS
    ]
    words.sort(key=len, reverse=True)

    keywords: list[str] = []
    seen: set[str] = set()
    for candidate in [*_paragraph_refs(text), *words]:
        key = candidate.lower()
        if key in seen:
            continue
        seen.add(key)
        keywords.append(candidate)
        if len(keywords) == max_keywords:
            break

    logger.debug("Extracted keywords %s", keywords)
    return keywords

