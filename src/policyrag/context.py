"""Bounded context assembly from ranked retrieval results."""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from policyrag.types import RetrievalResult

__all__ = ["TRUNCATION_MARKER", "assemble_context"]

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = " [...]"


def assemble_context(
    results: Sequence[RetrievalResult],
    max_chars: int,
    min_fragment_chars: int = 100,
    marker: str = TRUNCATION_MARKER,
) -> list[RetrievalResult]:
    """Greedily take results in ranked order until *max_chars* is used up.

    The first result that does not fit whole is truncated to the remaining
    budget (marker included) when that budget exceeds *min_fragment_chars*;
    otherwise it is dropped. Nothing after it is considered. Order is never
    changed and empty texts are skipped.
    """
    selected: list[RetrievalResult] = []
    used = 0

    for result in results:
        if not result.text:
            continue
        if used + len(result.text) <= max_chars:
            selected.append(result)
            used += len(result.text)
            continue

        remaining = max_chars - used
        if remaining > min_fragment_chars and remaining > len(marker):
            head = result.text[: remaining - len(marker)].rstrip()
            if head:
                selected.append(dataclasses.replace(result, text=head + marker))
                used += len(head) + len(marker)
        break

    logger.debug(
        "Assembled %d/%d results into %d chars (budget %d)",
        len(selected),
        len(results),
        used,
        max_chars,
    )
    return selected
