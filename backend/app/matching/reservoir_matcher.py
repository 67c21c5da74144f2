"""
reservoir_matcher.py — link monitored dams to upstream reservoir telemetry.

Reservoir feeds name the same structure many ways ("Bhakra Nangal Dam",
"BHAKRA RL1700_BBMB", "bhakra"). The matcher scores every candidate record
against a location and keeps the best one above a threshold.

Scoring
=======
For each display name of the location (its own name plus known aliases):

    name_score = max(jaccard(tokens(name), tokens(candidate)),
                     0.9 if one normalised name contains the other)

    score = best name_score + 0.2 if normalised regions are equal

Tokens are the words of the normalised name longer than two characters.
Normalisation lower-cases, replaces punctuation with spaces, and drops
generic words (dam, reservoir, lake, barrage, project) and station codes
(``rl<digits>``, ``ph``, ``bbmb``, ``cwc``, ``arg``).

A candidate is accepted when its score is at least ``min_score`` (0.45).
Ties keep the earliest candidate, so results are deterministic for a given
candidate order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from backend.app.ingestion.records import MonitoredLocation, ReservoirRecord


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_MIN_SCORE: float = 0.45
DEFAULT_REGION_BONUS: float = 0.2
DEFAULT_SUBSTRING_SCORE: float = 0.9
MIN_TOKEN_LENGTH: int = 3

DAM_ALIASES: Dict[str, List[str]] = {
    "tehri dam": ["tehri"],
    "bhakra nangal dam": ["bhakra", "bhakra dam"],
    "hirakud dam": ["hirakud"],
    "sardar sarovar dam": ["sardar sarovar"],
    "nagarjuna sagar dam": ["nagarjuna sagar"],
    "srisailam dam": ["srisailam"],
    "idukki dam": ["idukki"],
    "koyna dam": ["koyna"],
    "indira sagar dam": ["indira sagar", "narmada sagar"],
    "krishna raja sagara": ["krishna raja sagar", "krs"],
    "mettur dam": ["mettur"],
    "maithon dam": ["maithon"],
    "panchet dam": ["panchet"],
    "ukai dam": ["ukai"],
    "pong dam": ["pong"],
    "pandoh dam": ["pandoh"],
    "chamera dam": ["chamera"],
    "gumti dam": ["gumti"],
    "ramganga dam": ["ramganga"],
    "nizam sagar": ["nizam sagar", "nizamsagar"],
    "singur dam": ["singur"],
    "kadana dam": ["kadana"],
    "dantiwada dam": ["dantiwada"],
    "umiam lake dam": ["umiam", "umiam lake"],
}

_PUNCT_RE = re.compile(r"[^a-z0-9\s]")
_GENERIC_RE = re.compile(r"\b(dam|reservoir|barrage|project|lake|rl\d+|ph|bbmb|cwc|arg)\b")
_SPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def normalize_name(value: Optional[str]) -> str:
    """
    >>> normalize_name("Bhakra-Nangal Dam (RL1700)")
    'bhakra nangal'
    """
    text = _PUNCT_RE.sub(" ", str(value or "").lower())
    text = _GENERIC_RE.sub(" ", text)
    return _SPACE_RE.sub(" ", text).strip()


def name_tokens(value: Optional[str]) -> Set[str]:
    return {t for t in normalize_name(value).split(" ") if len(t) >= MIN_TOKEN_LENGTH}


def jaccard(a: Optional[str], b: Optional[str]) -> float:
    """Jaccard similarity of the two names' token sets; 0 if either is empty."""
    ta, tb = name_tokens(a), name_tokens(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReservoirMatch:
    record: ReservoirRecord
    score: float  # rounded to 2 decimals

    def to_dict(self) -> dict:
        return {**self.record.to_dict(), "match_score": self.score}


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------

class ReservoirMatcher:
    """
    Alias-aware fuzzy matcher.

    Parameters
    ----------
    aliases : mapping of lower-case display name → alternative names
    min_score : float
        Inclusive acceptance threshold.
    region_bonus : float
        Added when location and record regions normalise to the same text.
    substring_score : float
        Name score when one normalised name contains the other.
    """

    def __init__(
        self,
        aliases: Optional[Mapping[str, Sequence[str]]] = None,
        min_score: float = DEFAULT_MIN_SCORE,
        region_bonus: float = DEFAULT_REGION_BONUS,
        substring_score: float = DEFAULT_SUBSTRING_SCORE,
    ) -> None:
        source = DAM_ALIASES if aliases is None else aliases
        self.aliases: Dict[str, List[str]] = {
            k.strip().lower(): list(v) for k, v in source.items()
        }
        self.min_score = min_score
        self.region_bonus = region_bonus
        self.substring_score = substring_score

    def candidate_names(self, name: Optional[str]) -> List[str]:
        """The location's own name followed by its aliases."""
        if not name:
            return []
        return [name, *self.aliases.get(name.strip().lower(), [])]

    def score(self, location: MonitoredLocation, record: ReservoirRecord) -> float:
        """Unrounded match score of one candidate record."""
        record_name = record.name or ""
        norm_record = normalize_name(record_name)

        best = 0.0
        for name in self.candidate_names(location.name):
            best = max(best, jaccard(name, record_name))
            norm_name = normalize_name(name)
            if norm_name and norm_record and (norm_name in norm_record or norm_record in norm_name):
                best = max(best, self.substring_score)

        region_a = normalize_name(location.region)
        region_b = normalize_name(record.region)
        if region_a and region_b and region_a == region_b:
            best += self.region_bonus
        return best

    def match(
        self,
        location: MonitoredLocation,
        candidates: Iterable[ReservoirRecord],
    ) -> Optional[ReservoirMatch]:
        """
        Best-scoring candidate at or above ``min_score``, else None.

        Examples
        --------
        >>> loc = MonitoredLocation("D1", "Tehri Dam", "Uttarakhand", 30.37, 78.48)
        >>> m = ReservoirMatcher().match(loc, [ReservoirRecord(name="TEHRI", region="Uttarakhand")])
        >>> m.score
        1.2
        """
        best: Optional[ReservoirRecord] = None
        best_score = 0.0
        for record in candidates:
            s = self.score(location, record)
            if s > best_score:
                best, best_score = record, s

        if best is None or best_score < self.min_score:
            return None
        return ReservoirMatch(record=best, score=round(best_score, 2))
