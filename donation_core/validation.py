"""
Shape checks for recommendation documents.

The worker runs these over the model's answer, and the fetcher runs them
again over whatever the worker wrote, so both sides agree on one contract:
at most three recommendations, string ids, non-empty reasons, integer
confidence clamped into [0, 100].
"""

import logging
import math
from typing import Any, Collection, List, Optional

from donation_core.runtime import Recommendation, RecommendationResult


logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 3


def clamp_confidence(value: float) -> int:
    return int(round(max(0.0, min(100.0, float(value)))))


def _normalize_one(item: Any, index: int) -> Recommendation:
    if not isinstance(item, dict):
        raise ValueError(f"Invalid recommendation structure at position {index}")

    item_id = item.get("nftId")
    reason = item.get("reason")
    confidence = item.get("confidence")

    if item_id is None or item_id == "" or isinstance(item_id, (dict, list, bool)):
        raise ValueError(f"Invalid recommendation structure at position {index}: missing nftId")
    if not isinstance(reason, str) or not reason.strip():
        raise ValueError(f"Invalid recommendation structure at position {index}: missing reason")
    # bool is an int subclass; the model must send a real number
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or math.isnan(confidence):
        raise ValueError(f"Invalid recommendation structure at position {index}: confidence must be a number")

    return Recommendation(
        item_id=str(item_id),
        reason=reason.strip(),
        confidence=clamp_confidence(confidence),
    )


def normalize_recommendations(
    items: Any,
    known_ids: Optional[Collection[str]] = None,
    limit: int = MAX_RECOMMENDATIONS,
) -> List[Recommendation]:
    """
    Validate and normalize a raw recommendations list.

    Elements are consumed in order until ``limit`` are kept; elements past
    that point are not inspected. When ``known_ids`` is given, entries for
    ids outside it are dropped and do not count against the limit.

    Raises:
        ValueError: if ``items`` is not a list or a consumed element is malformed.
    """
    if not isinstance(items, list):
        raise ValueError("Invalid response format: recommendations must be a list")

    kept: List[Recommendation] = []
    for index, item in enumerate(items):
        if len(kept) >= limit:
            break
        recommendation = _normalize_one(item, index)
        if known_ids is not None and recommendation.item_id not in known_ids:
            logger.warning("Dropping recommendation for unknown item %s", recommendation.item_id)
            continue
        kept.append(recommendation)
    return kept


def parse_result_document(
    document: Any,
    known_ids: Optional[Collection[str]] = None,
) -> RecommendationResult:
    """Turn a decoded worker output document into a RecommendationResult."""
    if not isinstance(document, dict):
        raise ValueError("Result document must be a JSON object")

    if document.get("error") is True:
        return RecommendationResult.failure(str(document.get("message") or "Unknown error"))

    if "recommendations" not in document:
        raise ValueError("Invalid response format: missing recommendations")

    return RecommendationResult(
        recommendations=normalize_recommendations(document["recommendations"], known_ids),
    )
