"""
Nearest-embedding identity matching.

The matcher is a pure function over a snapshot of enrolled embeddings: build
one per request from ``load_embedding_snapshot`` and call ``match``. Distance
is Euclidean; a sample further than the threshold from every enrolled
embedding is unknown.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence

import numpy as np
from sklearn.metrics.pairwise import euclidean_distances

from biotrack.core.exceptions import InvalidEmbedding, NoEnrolledIdentities

logger = logging.getLogger(__name__)

UNKNOWN_LABEL = "unknown"


@dataclass(frozen=True)
class MatchResult:
    """Closest enrolled identity; ``identity_id`` is None when unknown"""
    identity_id: Optional[str]
    distance: float
    threshold: float

    @property
    def is_match(self) -> bool:
        return self.identity_id is not None

    @property
    def label(self) -> str:
        return self.identity_id if self.identity_id is not None else UNKNOWN_LABEL


class Matcher:
    def __init__(self, enrolled: Dict[str, Sequence[float]]):
        self.identity_ids = list(enrolled.keys())
        if self.identity_ids:
            try:
                self._matrix = np.array([enrolled[i] for i in self.identity_ids], dtype=np.float64)
            except ValueError:
                raise InvalidEmbedding("Enrolled embeddings do not share one length")
            if self._matrix.ndim != 2:
                raise InvalidEmbedding("Enrolled embeddings do not share one length")
        else:
            self._matrix = np.empty((0, 0), dtype=np.float64)

    def __len__(self):
        return len(self.identity_ids)

    def distances(self, sample: Sequence[float]) -> np.ndarray:
        """Distance from the sample to every enrolled embedding, in snapshot order"""
        if not self.identity_ids:
            raise NoEnrolledIdentities("No enrolled identities to match against")

        vector = np.asarray(sample, dtype=np.float64).reshape(1, -1)
        if vector.shape[1] != self._matrix.shape[1]:
            raise InvalidEmbedding(
                f"Sample has {vector.shape[1]} dimensions, enrolled embeddings have {self._matrix.shape[1]}",
                expected_dimensions=int(self._matrix.shape[1]),
                received_dimensions=int(vector.shape[1])
            )
        return euclidean_distances(vector, self._matrix)[0]

    def match(self, sample: Sequence[float], threshold: float) -> MatchResult:
        distances = self.distances(sample)

        # argmin keeps the first enrolled identity on ties
        best = int(np.argmin(distances))
        best_distance = float(distances[best])

        if best_distance > threshold:
            logger.debug(f"No match within {threshold}: best distance {best_distance:.4f}")
            return MatchResult(identity_id=None, distance=best_distance, threshold=threshold)

        return MatchResult(identity_id=self.identity_ids[best], distance=best_distance, threshold=threshold)

    def find_duplicate(
            self,
            sample: Sequence[float],
            threshold: float,
            exclude: Iterable[str] = ()
    ) -> Optional[MatchResult]:
        """Closest other identity lying within the threshold, if any"""
        excluded = set(exclude)
        if not self.identity_ids:
            return None

        distances = self.distances(sample)
        for index in np.argsort(distances, kind="stable"):
            identity_id = self.identity_ids[int(index)]
            if identity_id in excluded:
                continue
            distance = float(distances[int(index)])
            if distance <= threshold:
                return MatchResult(identity_id=identity_id, distance=distance, threshold=threshold)
            return None
        return None
