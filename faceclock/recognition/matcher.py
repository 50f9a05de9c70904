# faceclock/recognition/matcher.py
"""
Nearest-neighbour identity matcher with margin-based rejection.

A probe is accepted only when its best score clears the similarity threshold
AND beats the best *other* employee by the margin threshold. A false
"unknown" costs a retry; a false accept credits the wrong person.

Usage:
    matcher = IdentityMatcher(similarity_threshold=0.82, margin_threshold=0.10)
    outcome = matcher.match(probe, gallery.all())
    if isinstance(outcome, Match):
        print(outcome.result.employee_id, outcome.result.score)
"""
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Union

import numpy as np

from .embedding import normalize
from .gallery import EmployeeTemplate

logger = logging.getLogger(__name__)

REASON_EMPTY_GALLERY = "empty_gallery"
REASON_BELOW_THRESHOLD = "below_threshold"
REASON_AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class MatchResult:
    employee_id: str
    name: str
    score: float
    margin: float


@dataclass(frozen=True)
class Match:
    result: MatchResult

    @property
    def employee_id(self) -> str:
        return self.result.employee_id


@dataclass(frozen=True)
class Unknown:
    best_score: float
    margin: float
    reason: str
    best_employee_id: Optional[str] = None


@dataclass(frozen=True)
class Invalid:
    reason: str


MatchOutcome = Union[Match, Unknown, Invalid]


def outcome_to_dict(outcome: Optional[MatchOutcome]) -> Optional[dict]:
    if outcome is None:
        return None
    if isinstance(outcome, Match):
        r = outcome.result
        return {'kind': 'match', 'employee_id': r.employee_id, 'name': r.name,
                'score': round(r.score, 4), 'margin': round(r.margin, 4)}
    if isinstance(outcome, Unknown):
        return {'kind': 'unknown', 'reason': outcome.reason,
                'score': round(outcome.best_score, 4), 'margin': round(outcome.margin, 4)}
    return {'kind': 'invalid', 'reason': outcome.reason}


class IdentityMatcher:
    """Rejection-biased cosine matcher over a gallery of templates."""

    def __init__(self, similarity_threshold: float = 0.82, margin_threshold: float = 0.10):
        self.similarity_threshold = similarity_threshold
        self.margin_threshold = margin_threshold

    def _employee_score(self, probe: np.ndarray, template: EmployeeTemplate) -> Optional[float]:
        """Best cosine similarity of the probe against one employee's templates."""
        best = None
        for emb in template.embeddings:
            unit = normalize(emb)
            if unit is None or unit.shape != probe.shape:
                logger.warning(f"[Matcher] Skipping invalid template for {template.employee_id}")
                continue
            score = float(np.clip(np.dot(probe, unit), -1.0, 1.0))
            if best is None or score > best:
                best = score
        return best

    def match(self, probe, templates: Iterable[EmployeeTemplate]) -> MatchOutcome:
        """
        Match one probe embedding against the gallery.

        Returns:
            Match, Unknown (rejected) or Invalid (probe unusable)
        """
        unit = normalize(probe)
        if unit is None:
            return Invalid("probe failed normalization")

        best_score = None
        best_template = None
        second_score = None

        for template in templates:
            score = self._employee_score(unit, template)
            if score is None:
                continue
            if best_score is None or score > best_score:
                second_score = best_score
                best_score = score
                best_template = template
            elif second_score is None or score > second_score:
                second_score = score

        if best_template is None:
            return Unknown(best_score=0.0, margin=0.0, reason=REASON_EMPTY_GALLERY)

        # No other employee to compete with
        if second_score is None:
            second_score = 0.0
        margin = best_score - second_score

        if best_score < self.similarity_threshold:
            logger.debug(f"[Matcher] Below threshold: {best_template.employee_id} {best_score:.3f}")
            return Unknown(best_score, margin, REASON_BELOW_THRESHOLD, best_template.employee_id)
        if margin < self.margin_threshold:
            logger.debug(f"[Matcher] Ambiguous: best={best_score:.3f} margin={margin:.3f}")
            return Unknown(best_score, margin, REASON_AMBIGUOUS, best_template.employee_id)

        return Match(MatchResult(
            employee_id=best_template.employee_id,
            name=best_template.name,
            score=best_score,
            margin=margin,
        ))
