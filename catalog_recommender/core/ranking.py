"""
Aggregation of nearest-neighbor hits into ranked catalog recommendations.

Each hit votes for its record's catalog entry with its similarity
(1 - cosine distance). Votes are summed, so an entry that is both frequent
and similar beats one that is only one of the two.
"""

from typing import Dict, List, Optional, Sequence

from ..vector.types import NeighborHit
from .schema import Recommendation

MAX_SUPPORTING_RECORDS = 3


def similarity(hit: NeighborHit) -> float:
    return 1.0 - hit.distance


def aggregate(hits: Sequence[NeighborHit], top_k: int, min_similarity: Optional[float] = None,
              max_supporting: int = MAX_SUPPORTING_RECORDS) -> List[Recommendation]:
    """
    Rank catalog entries supported by `hits`.

    Args:
        hits: Neighbor hits in any order
        top_k: Maximum number of recommendations
        min_similarity: Hits below this similarity are discarded
        max_supporting: Record ids kept per recommendation for explainability

    Returns:
        Recommendations ordered by weighted_score desc, raw_count desc,
        catalog_path asc, with 1-based ranks. Empty when no hit survives.
    """
    if top_k < 1:
        return []

    groups: Dict[str, List[NeighborHit]] = {}
    for hit in hits:
        if min_similarity is not None and similarity(hit) < min_similarity:
            continue
        groups.setdefault(hit.catalog_id, []).append(hit)

    candidates = []
    for catalog_id, group in groups.items():
        # Most similar first; record_id keeps equal similarities deterministic
        group.sort(key=lambda hit: (-similarity(hit), hit.record_id))
        candidates.append(Recommendation(
            catalog_id=catalog_id,
            catalog_path=group[0].catalog_path,
            supporting_record_ids=[hit.record_id for hit in group[:max_supporting]],
            raw_count=len(group),
            weighted_score=sum(similarity(hit) for hit in group),
            rank=0,
        ))

    # Summed floats differ in the last bits; round so equal scores tie
    candidates.sort(key=lambda rec: (-round(rec.weighted_score, 9), -rec.raw_count, rec.catalog_path))

    ranked = candidates[:top_k]
    for position, recommendation in enumerate(ranked, start=1):
        recommendation.rank = position
    return ranked
