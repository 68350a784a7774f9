"""
Campaign identity resolution.

Local campaign references (an opaque reporting id and/or a display name) are mapped to the
provider's numeric campaign id by a fixed waterfall; the first strategy that matches wins:

    1. numeric_id       the local id is already all digits
    2. ignored          an administrator marked the id or name as "do not resolve"
    3. manual_mapping   an administrator mapped the id or name explicitly
    4. embedded_digits  a run of 6+ digits inside the name
    5. exact_name       the name equals a provider campaign name
    6. fuzzy_name       case-insensitive containment, either direction
    7. unresolved

When a reference carries no name (ledger rows only keep the campaign id), the id stands in
for the name in steps 4-6. The provider campaign listing is fetched at most once per
resolver instance, so build one resolver per batch.
"""
import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

_NUMERIC = re.compile(r'^[0-9]+$')
_EMBEDDED_ID = re.compile(r'(?:^|[^0-9])([0-9]{6,})(?=$|[^0-9])')

EXACT_MATCH = 2
CONTAINS_MATCH = 1
NO_MATCH = 0


@dataclass(frozen=True)
class CampaignRef:
    id: str
    name: Optional[str] = None

    @classmethod
    def coerce(cls, value):
        if isinstance(value, CampaignRef):
            return value
        if isinstance(value, dict):
            raw_id = value.get('id', value.get('campaignId'))
            name = value.get('name', value.get('campaignName'))
            return cls(id=str(raw_id).strip() if raw_id is not None else '',
                       name=str(name).strip() if name else None)
        return cls(id=str(value).strip())


@dataclass(frozen=True)
class Mapped:
    provider_id: str
    strategy: str


@dataclass(frozen=True)
class Ignored:
    key: str


@dataclass(frozen=True)
class Unmapped:
    reason: str


Resolution = Union[Mapped, Ignored, Unmapped]
MappingOverride = Union[Mapped, Ignored]


def score_name_match(local_name, provider_name):
    """
    Scores how well a local campaign name matches a provider campaign name.

    EXACT_MATCH for identical strings, CONTAINS_MATCH when either contains the other ignoring
    case, NO_MATCH otherwise. Blank names never match.
    """
    if not local_name or not provider_name:
        return NO_MATCH
    local = local_name.strip()
    remote = provider_name.strip()
    if not local or not remote:
        return NO_MATCH
    if local == remote:
        return EXACT_MATCH
    local_folded = local.casefold()
    remote_folded = remote.casefold()
    if local_folded in remote_folded or remote_folded in local_folded:
        return CONTAINS_MATCH
    return NO_MATCH


def best_name_match(name, campaigns):
    """Returns (campaign, score) for the highest-scoring provider campaign; ties keep listing order."""
    best, best_score = None, NO_MATCH
    for campaign in campaigns:
        score = score_name_match(name, campaign.get('name'))
        if score > best_score:
            best, best_score = campaign, score
            if score == EXACT_MATCH:
                break
    return best, best_score


def extract_embedded_id(text):
    if not text:
        return None
    match = _EMBEDDED_ID.search(text)
    return match.group(1) if match else None


class CampaignResolver:
    """
    Resolves campaign references for one batch.

    Args:
        overrides: key -> Mapped/Ignored, as loaded from the campaign mapping table.
        campaign_lister: zero-argument callable returning the provider campaign listing as
            dicts with 'id' and 'name'. Called lazily, at most once.
    """

    def __init__(self, overrides: Optional[Dict[str, MappingOverride]] = None,
                 campaign_lister: Optional[Callable[[], List[dict]]] = None):
        self.overrides = dict(overrides or {})
        self._folded_overrides = {k.casefold(): v for k, v in self.overrides.items()}
        self._campaign_lister = campaign_lister
        self._campaigns = None
        self.listing_error = None

    def _lookup(self, key):
        if not key:
            return None
        if key in self.overrides:
            return self.overrides[key]
        return self._folded_overrides.get(key.casefold())

    def provider_campaigns(self):
        if self._campaigns is None:
            self._campaigns = []
            if self._campaign_lister is not None:
                try:
                    self._campaigns = list(self._campaign_lister() or [])
                except Exception as exc:
                    logger.warning('Provider campaign listing failed; name matching disabled for this batch: %s', exc)
                    self.listing_error = str(exc)
        return self._campaigns

    def resolve(self, ref) -> Resolution:
        ref = CampaignRef.coerce(ref)
        local_id = (ref.id or '').strip()
        name = (ref.name or '').strip() or None

        if local_id and _NUMERIC.match(local_id):
            return Mapped(local_id, 'numeric_id')

        keys = [k for k in (local_id, name) if k]
        overrides = [self._lookup(k) for k in keys]
        for key, override in zip(keys, overrides):
            if isinstance(override, Ignored):
                return Ignored(key)
        for override in overrides:
            if isinstance(override, Mapped):
                return Mapped(override.provider_id, 'manual_mapping')

        candidate_name = name or local_id
        embedded = extract_embedded_id(candidate_name)
        if embedded:
            return Mapped(embedded, 'embedded_digits')

        if candidate_name:
            campaign, score = best_name_match(candidate_name, self.provider_campaigns())
            if score == EXACT_MATCH:
                return Mapped(campaign['id'], 'exact_name')
            if score == CONTAINS_MATCH:
                return Mapped(campaign['id'], 'fuzzy_name')

        if self.listing_error:
            return Unmapped(f'no match for {candidate_name!r}; provider listing unavailable: {self.listing_error}')
        return Unmapped(f'no provider campaign matches {candidate_name!r}')

    def resolve_many(self, refs: Iterable) -> 'ResolutionBatch':
        batch = ResolutionBatch()
        for raw in refs:
            ref = CampaignRef.coerce(raw)
            batch.add(ref, self.resolve(ref))
        return batch


class ResolutionBatch:
    """Resolution outcomes for a batch, grouped by provider campaign id in first-seen order."""

    def __init__(self):
        self.provider_ids: List[str] = []
        self.refs_by_provider: Dict[str, List[CampaignRef]] = {}
        self.ignored: List[CampaignRef] = []
        self.unresolved: List[tuple] = []
        self.outcomes: List[tuple] = []

    def add(self, ref, resolution):
        self.outcomes.append((ref, resolution))
        if isinstance(resolution, Mapped):
            if resolution.provider_id not in self.refs_by_provider:
                self.provider_ids.append(resolution.provider_id)
                self.refs_by_provider[resolution.provider_id] = []
            self.refs_by_provider[resolution.provider_id].append(ref)
        elif isinstance(resolution, Ignored):
            self.ignored.append(ref)
        else:
            self.unresolved.append((ref, resolution))


def load_overrides(mappings) -> Dict[str, MappingOverride]:
    """Turns CampaignMapping rows into resolver overrides."""
    overrides = {}
    for mapping in mappings:
        if mapping.ignored:
            overrides[mapping.key] = Ignored(mapping.key)
        elif mapping.provider_id:
            overrides[mapping.key] = Mapped(str(mapping.provider_id), 'manual_mapping')
    return overrides
