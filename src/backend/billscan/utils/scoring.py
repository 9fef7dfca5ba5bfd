"""
Scoring functions for extraction candidates.

Each function returns a score from 0.0 (worst) to 1.0 (best).
The highest-scoring candidate is selected as the final result.
"""

from typing import Callable, List, Optional, Sequence, Tuple, TypeVar
import math

from .candidates import Candidate, AmountCandidate, VendorCandidate

__all__ = [
    'select_best_candidate', 'select_top_candidates',
    'select_best_amount', 'select_best_vendor',
    'score_amount_candidate', 'score_vendor_candidate',
]

T = TypeVar('T', bound=Candidate)

# Keyword proximity window used when building amount candidates
PROXIMITY_WINDOW = 50


def score_amount_candidate(candidate: AmountCandidate) -> float:
    """
    Score amount candidate based on pattern quality and context.

    Scoring factors (weights):
    - Base priority: 1.0 / (1 + log10(priority))
    - Proximity bonus: Up to +0.3 when a total/due keyword is within 50 chars
    - Keyword line bonus: +0.2 when the keyword is on the same line
    - Currency bonus: +0.1 when a currency marker is attached
    - Highlight bonus: + label weight for vendor summary-box matches
    - Blacklist penalty: -0.5 if the line is a subtotal, tax or previous balance

    Args:
        candidate: AmountCandidate to score

    Returns:
        Score from 0.0 to 1.0
    """
    score = 0.5 / (1.0 + math.log10(max(1, candidate.priority)))

    if candidate.proximity_to_keywords <= PROXIMITY_WINDOW:
        score += 0.3 * (1.0 - candidate.proximity_to_keywords / PROXIMITY_WINDOW)

    if candidate.on_keyword_line:
        score += 0.2

    if candidate.has_currency:
        score += 0.1

    score += candidate.highlight_weight

    if candidate.in_blacklist_context:
        score -= 0.5

    if candidate.value <= 0:
        return 0.0

    return max(0.0, min(1.0, score))


def score_vendor_candidate(candidate: VendorCandidate) -> float:
    """
    Score vendor candidate by where it came from.

    - Sender display name: 0.8
    - Sender domain: 0.6
    - Subject words: 0.4
    - Company suffix was present: +0.1
    - Very long names (> 5 words): -0.2
    """
    if candidate.from_sender_name:
        score = 0.8
    elif candidate.from_domain:
        score = 0.6
    elif candidate.from_subject:
        score = 0.4
    else:
        score = 0.3

    if candidate.has_company_suffix:
        score += 0.1

    if len(candidate.value.split()) > 5:
        score -= 0.2

    return max(0.0, min(1.0, score))


def select_top_candidates(
    candidates: Sequence[T],
    scorer: Callable[[T], float],
    top_n: int = 3
) -> List[Tuple[T, float]]:
    """
    Rank candidates by score, earliest position first on ties.

    Returns:
        Up to top_n (candidate, score) tuples, best first
    """
    scored = [(c, scorer(c)) for c in candidates]
    scored.sort(key=lambda item: (-item[1], item[0].match_span[0]))
    return scored[:top_n]


def select_best_candidate(
    candidates: Sequence[T],
    scorer: Callable[[T], float]
) -> Optional[Tuple[T, float]]:
    top = select_top_candidates(candidates, scorer, top_n=1)
    if not top or top[0][1] <= 0.0:
        return None
    return top[0]


def select_best_amount(candidates: Sequence[AmountCandidate]) -> Optional[Tuple[AmountCandidate, float]]:
    return select_best_candidate(candidates, score_amount_candidate)


def select_best_vendor(candidates: Sequence[VendorCandidate]) -> Optional[Tuple[VendorCandidate, float]]:
    return select_best_candidate(candidates, score_vendor_candidate)
