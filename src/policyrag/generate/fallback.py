"""Deterministic offline answers composed from the retrieved context."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from policyrag.generate.base import BaseLanguageModel

if TYPE_CHECKING:
    from collections.abc import Sequence

    from policyrag.generate.base import GenerationOptions
    from policyrag.types import RetrievalResult

__all__ = ["DISCLAIMER", "FallbackLanguageModel"]

logger = logging.getLogger(__name__)

DISCLAIMER = (
    "Dies ist eine allgemeine Information und keine Rechts- oder Versicherungsberatung. "
    "Für verbindliche Auskünfte wenden Sie sich bitte an eine Fachperson."
)

_REFERENCE_RE = re.compile(
    r"§\s*\d+|\b\d+\s*(?:bgb|stgb|vvg)\b|\bart(?:ikel|\.)?\s*\d+", re.IGNORECASE
)

_MAX_RELATED = 4

# Cue word in the text → explanation sentence.
_EXPLANATIONS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("verpflichtet",), "die Pflichten der beteiligten Parteien."),
    (("Schaden",), "die Haftung und den Ersatz von Schäden."),
    (("Strafe", "Freiheitsstrafe"), "die strafrechtlichen Konsequenzen."),
    (("Versicher",), "Rechte und Pflichten aus dem Versicherungsverhältnis."),
)


def _heading(result: RetrievalResult) -> str:
    category = str(result.metadata.get("category") or "")
    heading = result.source_label
    return f"{heading} ({category})" if category else heading


class FallbackLanguageModel(BaseLanguageModel):
    """Answers without a language model by quoting the best-ranked context.

    Used when no LLM is configured; ``is_degraded`` is always True.
    """

    @property
    def model_name(self) -> str:
        return "fallback"

    @property
    def is_degraded(self) -> bool:
        return True

    def generate(
        self,
        prompt: str,
        options: GenerationOptions,
        *,
        question: str = "",
        context: Sequence[RetrievalResult] = (),
    ) -> str:
        if not context:
            return self._no_context_answer(question)

        best = max(context, key=lambda r: r.similarity)
        parts = [
            "AUSKUNFT (ohne Sprachmodell erstellt)",
            f"## {_heading(best)}",
            f"### Text\n{best.text}",
        ]

        explanations = [
            sentence
            for cues, sentence in _EXPLANATIONS
            if any(cue in best.text for cue in cues)
        ]
        if explanations:
            parts.append("### Erklärung\nDiese Regelung betrifft " + " ".join(explanations))

        related = [r for r in context if r is not best][:_MAX_RELATED]
        if related:
            lines = ["### Weitere relevante Texte"]
            for i, result in enumerate(related, start=2):
                lines.append(f"#### {i}. {_heading(result)}\n{result.text}")
            parts.append("\n\n".join(lines))

        parts.append(f"---\n{DISCLAIMER}")
        return "\n\n".join(parts)

    @staticmethod
    def _no_context_answer(question: str) -> str:
        if _REFERENCE_RE.search(question):
            return (
                "Zu der angefragten Vorschrift wurden in der Datenbank keine Texte gefunden.\n\n"
                + DISCLAIMER
            )
        return (
            "Zu Ihrer Frage wurden keine passenden Texte gefunden. Sie können zum Beispiel "
            'nach einem Paragraphen ("§ 433 BGB"), einem Rechtsgebiet ("Mietrecht") oder '
            'einem Begriff ("Schadensersatz") fragen.\n\n' + DISCLAIMER
        )

    def info(self) -> dict[str, Any]:
        return {"provider": "fallback", "model": "fallback", "degraded": True}
