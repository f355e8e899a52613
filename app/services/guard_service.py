"""Self-exclusion guard — a subject is never its own comparable.

Candidates are rejected by identity before scoring and the assembled result
is checked again. Location precision exclusions (Golden Mile vs New Golden
Mile) are enforced here as well, for every tier.
"""
from typing import Iterable, Optional

from app.core.logging import get_logger
from app.schemas.property_schema import PropertyRecord
from app.schemas.search_schema import ComparableMatch
from app.services.identity_service import derive_property_identity
from app.services.location_service import ResolvedLocation, resolve, should_exclude_location

logger = get_logger(__name__)


class SelfExclusionGuard:
    def __init__(self, subject: PropertyRecord, location: Optional[ResolvedLocation] = None):
        # derive_property_identity raises IdentityError, a search never runs without a key
        self.subject_id = subject.id or derive_property_identity(subject)
        self.feed_source = subject.feed_source
        self.reference = subject.reference
        self.location = location or resolve(subject)

    def _same_listing(self, candidate: PropertyRecord) -> bool:
        if candidate.id == self.subject_id:
            return True
        return bool(
            self.reference
            and candidate.reference == self.reference
            and candidate.feed_source == self.feed_source
        )

    def rejects(
        self,
        candidate_id: str,
        candidate: Optional[PropertyRecord] = None,
        candidate_location: Optional[ResolvedLocation] = None,
    ) -> bool:
        """Cheap pre-scoring rejection."""
        if candidate_id == self.subject_id:
            return True
        if candidate is not None and self._same_listing(candidate):
            return True
        if candidate_location is not None and should_exclude_location(self.location, candidate_location):
            return True
        return False

    def filter(self, matches: Iterable[ComparableMatch]) -> list[ComparableMatch]:
        """Post-assembly re-check."""
        kept: list[ComparableMatch] = []
        for match in matches:
            if self._same_listing(match.property):
                logger.warning(
                    "Subject %s reached the assembled result, dropped", self.subject_id,
                    extra={"subject_id": self.subject_id},
                )
                continue
            if should_exclude_location(self.location, resolve(match.property)):
                continue
            kept.append(match)
        return kept
