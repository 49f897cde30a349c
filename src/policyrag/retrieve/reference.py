"""Small built-in reference corpus for degraded retrieval.

When every remote retrieval strategy fails, answers are still grounded in
a handful of core statutory provisions, ranked by keyword overlap.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from policyrag.retrieve.keywords import tokenize
from policyrag.types import RetrievalResult

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

__all__ = ["DEFAULT_REFERENCE_ENTRIES", "ReferenceEntry", "ReferenceSet"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReferenceEntry:
    """One provision of the reference corpus."""

    entry_id: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


def _entry(law: str, paragraph: str, title: str, category: str, text: str) -> ReferenceEntry:
    return ReferenceEntry(
        entry_id=f"ref_{law.lower()}_{paragraph.strip('§ ').replace('.', '').replace(' ', '')}",
        text=text,
        metadata={
            "law_code": law,
            "paragraph_number": paragraph,
            "title": title,
            "category": category,
            "reference": True,
        },
    )


DEFAULT_REFERENCE_ENTRIES: tuple[ReferenceEntry, ...] = (
    _entry(
        "BGB", "§ 433", "Vertragstypische Pflichten beim Kaufvertrag", "zivilrecht",
        "Durch den Kaufvertrag wird der Verkäufer einer Sache verpflichtet, dem Käufer "
        "die Sache zu übergeben und das Eigentum an der Sache zu verschaffen. Der Käufer "
        "ist verpflichtet, dem Verkäufer den vereinbarten Kaufpreis zu zahlen und die "
        "gekaufte Sache abzunehmen.",
    ),
    _entry(
        "BGB", "§ 535", "Inhalt und Hauptpflichten des Mietvertrags", "mietrecht",
        "Durch den Mietvertrag wird der Vermieter verpflichtet, dem Mieter den Gebrauch "
        "der Mietsache während der Mietzeit zu gewähren. Der Mieter ist verpflichtet, "
        "dem Vermieter die vereinbarte Miete zu entrichten.",
    ),
    _entry(
        "BGB", "§ 823", "Schadensersatzpflicht", "haftung",
        "Wer vorsätzlich oder fahrlässig das Leben, den Körper, die Gesundheit, die "
        "Freiheit, das Eigentum oder ein sonstiges Recht eines anderen widerrechtlich "
        "verletzt, ist dem anderen zum Ersatz des daraus entstehenden Schadens verpflichtet.",
    ),
    _entry(
        "BGB", "§ 1922", "Gesamtrechtsnachfolge", "erbrecht",
        "Mit dem Tode einer Person geht deren Vermögen als Ganzes auf eine oder mehrere "
        "andere Personen (Erben) über.",
    ),
    _entry(
        "VVG", "§ 1", "Vertragstypische Pflichten des Versicherungsvertrags", "versicherung",
        "Der Versicherer verpflichtet sich mit dem Versicherungsvertrag, ein bestimmtes "
        "Risiko des Versicherungsnehmers oder eines Dritten durch eine Leistung abzusichern, "
        "die er bei Eintritt des vereinbarten Versicherungsfalles zu erbringen hat. Der "
        "Versicherungsnehmer ist verpflichtet, an den Versicherer die vereinbarte Zahlung "
        "(Prämie) zu leisten.",
    ),
    _entry(
        "VVG", "§ 28", "Verletzung einer vertraglichen Obliegenheit", "versicherung",
        "Bei Verletzung einer vertraglichen Obliegenheit, die vom Versicherungsnehmer vor "
        "Eintritt des Versicherungsfalles gegenüber dem Versicherer zu erfüllen ist, kann "
        "der Versicherer den Vertrag innerhalb eines Monats, nachdem er von der Verletzung "
        "Kenntnis erlangt hat, ohne Einhaltung einer Frist kündigen.",
    ),
    _entry(
        "VVG", "§ 115", "Direktanspruch", "kfz",
        "Der Dritte kann seinen Anspruch auf Schadensersatz auch gegen den Versicherer "
        "geltend machen, wenn es sich um eine Haftpflichtversicherung zur Erfüllung einer "
        "nach dem Pflichtversicherungsgesetz bestehenden Versicherungspflicht handelt.",
    ),
    _entry(
        "StGB", "§ 223", "Körperverletzung", "strafrecht",
        "Wer eine andere Person körperlich misshandelt oder an der Gesundheit schädigt, "
        "wird mit Freiheitsstrafe bis zu fünf Jahren oder mit Geldstrafe bestraft.",
    ),
    _entry(
        "GG", "Art. 1", "Schutz der Menschenwürde", "verfassung",
        "Die Würde des Menschen ist unantastbar. Sie zu achten und zu schützen ist "
        "Verpflichtung aller staatlichen Gewalt.",
    ),
    _entry(
        "KSchG", "§ 1", "Sozial ungerechtfertigte Kündigungen", "arbeitsrecht",
        "Die Kündigung des Arbeitsverhältnisses gegenüber einem Arbeitnehmer, dessen "
        "Arbeitsverhältnis in demselben Betrieb oder Unternehmen ohne Unterbrechung länger "
        "als sechs Monate bestanden hat, ist rechtsunwirksam, wenn sie sozial "
        "ungerechtfertigt ist.",
    ),
)


class ReferenceSet:
    """Lazily prepared, thread-safe reference corpus.

    ``ensure_loaded()`` runs the loader exactly once, however many threads
    call it; ``rank()`` calls it implicitly.
    """

    def __init__(
        self,
        entries: Sequence[ReferenceEntry] | None = None,
        *,
        loader: Callable[[], Sequence[ReferenceEntry]] | None = None,
    ) -> None:
        if entries is not None and loader is not None:
            raise ValueError("Pass either entries or loader, not both")
        self._source: Callable[[], Sequence[ReferenceEntry]] = loader or (
            lambda: DEFAULT_REFERENCE_ENTRIES if entries is None else entries
        )
        self._lock = threading.Lock()
        self._entries: tuple[ReferenceEntry, ...] = ()
        self._tokens: tuple[set[str], ...] = ()
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def ensure_loaded(self) -> None:
        """Load and index the corpus on first call; later calls are no-ops."""
        if self._loaded:
            return
        with self._lock:
            if self._loaded:
                return
            entries = tuple(self._source())
            self._tokens = tuple(
                tokenize(f"{e.metadata.get('title', '')} {e.text}") for e in entries
            )
            self._entries = entries
            self._loaded = True
            logger.info("Loaded reference set with %d entries", len(entries))

    def __len__(self) -> int:
        self.ensure_loaded()
        return len(self._entries)

    def rank(self, query: str, limit: int) -> list[RetrievalResult]:
        """Entries ranked by keyword overlap with *query*, best first, stable on ties."""
        self.ensure_loaded()
        query_tokens = tokenize(query)
        scored = [
            RetrievalResult(
                chunk_id=entry.entry_id,
                text=entry.text,
                similarity=len(query_tokens & tokens) / len(query_tokens) if query_tokens else 0.0,
                metadata=dict(entry.metadata),
            )
            for entry, tokens in zip(self._entries, self._tokens, strict=True)
        ]
        scored.sort(key=lambda r: r.similarity, reverse=True)
        return scored[: max(limit, 0)]
