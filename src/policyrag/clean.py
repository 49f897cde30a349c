"""Text cleaning for scraped insurance and legal documents.

Runs before chunking: strips HTML, repairs mis-decoded umlauts, removes
page furniture and normalizes whitespace.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass

__all__ = ["TextReport", "clean_text", "validate_text"]

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")

# UTF-8 bytes read as Latin-1/CP1252.
_MOJIBAKE: dict[str, str] = {
    "Ã¤": "ä",
    "Ã¶": "ö",
    "Ã¼": "ü",
    "Ã„": "Ä",
    "Ã–": "Ö",
    "Ãœ": "Ü",
    "ÃŸ": "ß",
    "â‚¬": "€",
}

_FORMATTING_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"Seite\s+\d+\s+von\s+\d+", re.IGNORECASE), ""),
    (re.compile(r"\n[-–—]{3,}\n"), "\n\n"),
    (re.compile(r"§\s*§"), "§"),
    (re.compile(r"¶"), "§"),
    (re.compile(r"\|[\s\-]+\|"), " "),
    (re.compile(r"•\s*"), "- "),
    (re.compile(r"◦\s*"), "  - "),
    (re.compile(r"▪\s*"), "- "),
)

_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_DISALLOWED_RE = re.compile(r"[^\w\s.,;:!?()\-–—\"„“‚‘’'€/%§&+*=<>\[\]]")


def _normalize_whitespace(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r" +\n", "\n", text)
    text = re.sub(r"\n +", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def clean_text(
    text: str,
    *,
    remove_html: bool = True,
    fix_encoding: bool = True,
    clean_formatting: bool = True,
    remove_special: bool = True,
    normalize_whitespace: bool = True,
) -> str:
    """Run the full cleaning pipeline over raw document text."""
    if not text:
        return ""

    clean = text
    if remove_html:
        clean = html.unescape(_TAG_RE.sub(" ", clean))
    if fix_encoding:
        for wrong, right in _MOJIBAKE.items():
            clean = clean.replace(wrong, right)
    if clean_formatting:
        for pattern, replacement in _FORMATTING_RULES:
            clean = pattern.sub(replacement, clean)
    if remove_special:
        clean = _CONTROL_RE.sub("", clean)
        clean = _DISALLOWED_RE.sub(" ", clean)
    if normalize_whitespace:
        clean = _normalize_whitespace(clean)
    return clean


@dataclass(frozen=True)
class TextReport:
    """Cleaned-text quality report."""

    valid: bool
    warnings: tuple[str, ...]
    length: int
    lines: int
    words: int
    has_umlauts: bool


def validate_text(text: str) -> TextReport:
    """Flag cleaned text that is suspiciously short or still dirty."""
    words = len(text.split())
    warnings: list[str] = []
    if len(text) < 100:
        warnings.append("Text is very short (< 100 characters)")
    if words < 20:
        warnings.append("Text has very few words (< 20)")
    if "�" in text:
        warnings.append("Contains replacement character (encoding issue)")
    if _TAG_RE.search(text):
        warnings.append("Still contains HTML tags")
    if re.search(r"\s{5,}", text):
        warnings.append("Contains excessive whitespace")

    return TextReport(
        valid=not warnings,
        warnings=tuple(warnings),
        length=len(text),
        lines=text.count("\n") + 1 if text else 0,
        words=words,
        has_umlauts=bool(re.search(r"[äöüÄÖÜß]", text)),
    )
