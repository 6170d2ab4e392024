"""
Exposure Compliance Engine - Identity Resolver.

============================================================
PURPOSE
============================================================
Attaches a worker to an air sample for exposure accounting and
supplies per-person / per-monitor-name sample statistics.

============================================================
RESOLUTION RULES
============================================================
1. DIRECT: a non-blank person_id on the sample is authoritative.
2. NAME_FALLBACK: only when person_id is blank, and only for
   personal/excursion samples. The monitor-worn-by text must
   match exactly one active person in the organization
   ("First Last" or "Last, First", case and spacing ignored).
   Blank names and "n/a" never match.
3. Otherwise the sample is unresolved.

A linked sample never appears in any monitor-name query or
aggregate, so a worker's exposure is not counted twice once
their samples are properly linked.

The resolver only reads. Backfilling person links onto
historical samples is left to the caller; suggest_person_links
supplies the candidates.

============================================================
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from .models import AirSample, Personnel
from .normalization import normalize_name, normalize_person_id
from .repository import AirSampleRepository
from .types import (
    CandidateMatch,
    MatchConfidence,
    PERSONAL_SAMPLE_TYPES,
    PersonLinkSuggestion,
    SampleStats,
)

logger = logging.getLogger(__name__)


def person_name_keys(person: Personnel) -> Set[str]:
    """Normalized spellings a monitor-worn-by entry may use for a person."""
    first = person.first_name or ""
    last = person.last_name or ""
    keys = {
        normalize_name(f"{first} {last}"),
        normalize_name(f"{last}, {first}"),
    }
    keys.discard(None)
    return keys


def build_name_index(personnel: Iterable[Personnel]) -> Dict[str, List[str]]:
    """Map each normalized name spelling to the person ids carrying it."""
    index: Dict[str, List[str]] = defaultdict(list)
    for person in personnel:
        for key in person_name_keys(person):
            if person.person_id not in index[key]:
                index[key].append(person.person_id)
    return dict(index)


class IdentityResolver:
    """
    Resolves air samples to people within one organization.

    ============================================================
    METHODS
    ============================================================
    - get_air_samples_for_person_in_org
    - get_air_samples_for_monitor_name_in_org
    - get_air_sample_stats_by_person
    - get_air_sample_stats_by_monitor_name
    - resolve_sample
    - suggest_person_links

    ============================================================
    """

    def __init__(self, session: Session):
        self._samples = AirSampleRepository(session)

    # --------------------------------------------------------
    # SAMPLE QUERIES
    # --------------------------------------------------------

    def get_air_samples_for_person_in_org(
        self,
        organization_id: str,
        person_id: str
    ) -> List[AirSample]:
        """Samples explicitly linked to the person."""
        return self._samples.get_samples_for_person(organization_id, person_id)

    def get_air_samples_for_monitor_name_in_org(
        self,
        organization_id: str,
        name: str
    ) -> List[AirSample]:
        """Unlinked personal/excursion samples worn by someone with this name."""
        return self._samples.get_samples_for_monitor_name(organization_id, name)

    def get_air_sample_stats_by_person(self, organization_id: str) -> List[SampleStats]:
        return self._samples.get_stats_by_person(organization_id)

    def get_air_sample_stats_by_monitor_name(self, organization_id: str) -> List[SampleStats]:
        return self._samples.get_stats_by_monitor_name(organization_id)

    # --------------------------------------------------------
    # RESOLUTION
    # --------------------------------------------------------

    def resolve_sample(
        self,
        sample: AirSample,
        organization_id: Optional[str] = None,
        name_index: Optional[Dict[str, List[str]]] = None
    ) -> Optional[CandidateMatch]:
        """
        Attribute one sample to a person.

        Args:
            sample: The air sample
            organization_id: Sample's organization (looked up from the
                             job when not given)
            name_index: Prebuilt name index, for resolving many samples
                        of one organization without re-reading personnel

        Returns:
            CandidateMatch, or None when the sample cannot be attributed
        """
        person_id = normalize_person_id(sample.person_id)
        if person_id is not None:
            return CandidateMatch(
                air_sample_id=sample.id,
                person_id=person_id,
                confidence=MatchConfidence.DIRECT,
            )

        if (sample.sample_type or "").strip().lower() not in PERSONAL_SAMPLE_TYPES:
            return None

        name = normalize_name(sample.monitor_worn_by)
        if name is None:
            return None

        if name_index is None:
            if organization_id is None:
                organization_id = self._samples.get_organization_for_job(sample.job_id)
            if organization_id is None:
                return None
            name_index = build_name_index(self._samples.list_active_personnel(organization_id))

        candidates = name_index.get(name, [])
        if len(candidates) != 1:
            if candidates:
                logger.info(
                    f"Monitor name {sample.monitor_worn_by!r} on sample {sample.id} "
                    f"matches {len(candidates)} people, leaving unresolved"
                )
            return None

        return CandidateMatch(
            air_sample_id=sample.id,
            person_id=candidates[0],
            confidence=MatchConfidence.NAME_FALLBACK,
            matched_name=sample.monitor_worn_by.strip(),
        )

    def name_index_for(self, organization_id: str) -> Dict[str, List[str]]:
        """Name index over the organization's active personnel."""
        return build_name_index(self._samples.list_active_personnel(organization_id))

    def suggest_person_links(self, organization_id: str) -> List[PersonLinkSuggestion]:
        """
        Candidate people for every monitor name found on unlinked samples.

        Names without any matching person are still listed, with an
        empty candidate list, so they can be reviewed manually.
        """
        name_index = self.name_index_for(organization_id)
        suggestions = []
        for stats in self.get_air_sample_stats_by_monitor_name(organization_id):
            key = normalize_name(stats.key)
            suggestions.append(PersonLinkSuggestion(
                monitor_name=stats.display_name or stats.key,
                stats=stats,
                candidate_person_ids=list(name_index.get(key, [])) if key else [],
            ))
        return suggestions
