# metadata/service.py
from __future__ import annotations

from core.models import CandidateResult, Track


class MetadataService:
    """
    Remote lookup service for track metadata and free-text search.

    resolve() raises TrackNotFound for unknown ids and ResolutionFailure for
    anything else; search() raises SearchFailure. Results are in provider
    ranking order.
    """

    def resolve(self, track_id: str) -> Track:
        raise NotImplementedError

    def search(self, query: str, max_results: int = 10) -> list[CandidateResult]:
        raise NotImplementedError
