"""Prompt construction for answer generation.

``build_prompt`` is a pure function of its inputs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from policyrag.types import QueryFilters, RetrievalResult

__all__ = ["NO_CONTEXT_PLACEHOLDER", "SYSTEM_PROMPT", "build_prompt", "format_source"]

SYSTEM_PROMPT = """Du bist ein hilfreicher Assistent für deutsches Versicherungs- und Rechtswesen.
Du antwortest auf Deutsch und hilfst Nutzern, Versicherungsbedingungen, Gesetze und Paragraphen zu verstehen.

Wichtige Regeln:
1. Antworte ausschließlich auf Basis der bereitgestellten Texte
2. Zitiere immer die genaue Quelle (z.B. § 433 BGB oder den Dokumenttitel)
3. Erkläre Fachbegriffe verständlich
4. Nenne verwandte Regelungen, wenn sie im Kontext stehen
5. Wenn der Kontext die Frage nicht beantwortet, sage das offen
6. Bei komplexen Fragen: Verweise auf professionelle Beratung"""

OUTPUT_FORMAT = """ANTWORT-FORMAT:
QUELLE: [Gesetz und Paragraph oder Dokument]
INHALT: [Kernaussage]
ERKLÄRUNG: [Verständliche Erklärung]
ANWENDUNG: [Praktisches Beispiel]

HINWEIS: Dies ist eine allgemeine Information und keine Rechts- oder Versicherungsberatung."""

NO_CONTEXT_PLACEHOLDER = "[Keine relevanten Texte gefunden]"


def format_source(result: RetrievalResult) -> str:
    """Source label for a context entry: law and paragraph or title, plus category."""
    label = result.source_label
    category = str(result.metadata.get("category") or "")
    return f"{label} ({category})" if category else label


def build_prompt(
    question: str,
    context: Sequence[RetrievalResult],
    filters: QueryFilters | None = None,
) -> str:
    """Assemble the full generation prompt.

    System instructions, numbered context entries with source labels,
    active filters, the verbatim question and output-format instructions.
    """
    if context:
        entries = "\n".join(
            f"--- Text {i} ---\nQuelle: {format_source(r)}\nInhalt:\n{r.text}\n---"
            for i, r in enumerate(context, start=1)
        )
    else:
        entries = NO_CONTEXT_PLACEHOLDER

    filter_lines = ""
    if filters:
        if filters.category:
            filter_lines += f"\nKategorie: {filters.category}"
        if filters.source:
            filter_lines += f"\nQuelle: {filters.source}"

    return (
        f"{SYSTEM_PROMPT}\n\n"
        f"=== KONTEXT ===\n{entries}\n{filter_lines}\n=== ENDE KONTEXT ===\n\n"
        f"Frage: {question}\n\n"
        f"{OUTPUT_FORMAT}\n\n"
        "Bitte beantworte die Frage basierend auf den obigen Texten.\n\n"
        "Antwort:"
    )
