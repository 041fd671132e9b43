from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from parcel_discovery.model import (
    SOURCE_TRUST,
    CanonicalProperty,
    EnrichmentReport,
    FailureKind,
    FragmentSource,
    ProviderResult,
    PropertyFragment,
    iter_leaves,
)
from parcel_discovery.normalizer import TaggedPayload, normalize_payload


logger = logging.getLogger("parcel_discovery.merge")


def merge(
    existing: Optional[CanonicalProperty],
    fragment: PropertyFragment,
) -> CanonicalProperty:
    """Fold one fragment into a record, append-only.

    A leaf is written only when the fragment has a value for it and the
    record either lacks it or holds it from a lower-trust source. Values are
    never replaced by None, and re-merging the same fragment is a no-op.
    """
    if existing is None:
        if not fragment.identity:
            raise ValueError("cannot start a record from a fragment without identity")
        existing = CanonicalProperty(identity=fragment.identity)
    elif fragment.identity and fragment.identity != existing.identity:
        raise ValueError(
            f"identity mismatch: record {existing.identity!r} vs fragment {fragment.identity!r}"
        )

    if fragment.normalization_failed:
        return existing

    trust = int(SOURCE_TRUST[fragment.source])
    provenance = dict(existing.provenance)
    updates: Dict[str, Dict[str, Any]] = {}
    for group, name, value in iter_leaves(fragment):
        if value is None:
            continue
        key = f"{group}.{name}"
        current = getattr(getattr(existing, group), name)
        if current is not None and provenance.get(key, 0) >= trust:
            continue
        updates.setdefault(group, {})[name] = value
        provenance[key] = trust

    changed_groups = {
        group: replace(getattr(existing, group), **values)
        for group, values in updates.items()
    }
    return replace(
        existing,
        provider_id=existing.provider_id or fragment.provider_id,
        provenance=provenance,
        merged_sources=existing.merged_sources | {str(fragment.source)},
        **changed_groups,
    )


def merge_all(
    existing: Optional[CanonicalProperty],
    fragments: Iterable[PropertyFragment],
) -> Optional[CanonicalProperty]:
    record = existing
    for fragment in fragments:
        if fragment.normalization_failed:
            continue
        record = merge(record, fragment)
    return record


def fold_fragments(
    fragments: Iterable[PropertyFragment],
    known: Optional[Mapping[str, CanonicalProperty]] = None,
) -> List[CanonicalProperty]:
    """Collapse fragments into one record per identity, first-seen order.

    ``known`` seeds records that already exist elsewhere in the session so a
    repeated search does not throw away enrichment already merged.
    """
    known = known or {}
    records: Dict[str, CanonicalProperty] = {}
    for fragment in fragments:
        if fragment.normalization_failed or not fragment.identity:
            continue
        identity = fragment.identity
        base = records.get(identity) or known.get(identity)
        records[identity] = merge(base, fragment)
    return list(records.values())


def needs_enrichment(record: CanonicalProperty) -> bool:
    """Building and lot size only come from the detail endpoint.

    Records without a provider id cannot be looked up, and records that
    already absorbed a detail response are not fetched again.
    """
    if not record.provider_id:
        return False
    if FragmentSource.DETAIL in record.merged_sources:
        return False
    return record.building.size_sq_ft is None or record.lot.size_sq_ft is None


def _as_result(outcome: Any, label: str) -> ProviderResult:
    if isinstance(outcome, ProviderResult):
        return outcome
    if isinstance(outcome, BaseException):
        logger.error("enrichment %s raised: %r", label, outcome)
        return ProviderResult.failure(FailureKind.NETWORK, detail=repr(outcome))
    return ProviderResult.success(outcome)


async def fetch_enrichment(
    record: CanonicalProperty,
    source: Any,
) -> Tuple[List[PropertyFragment], EnrichmentReport]:
    """Call detail, owner and events concurrently; return the usable fragments.

    Failed calls contribute nothing. Fragments whose identity does not match
    the record are dropped rather than merged into the wrong parcel.
    """
    provider_id = record.provider_id or record.identity
    outcomes = await asyncio.gather(
        source.get_detail(provider_id),
        source.get_owner(provider_id),
        source.get_events(provider_id),
        return_exceptions=True,
    )
    labels = (FragmentSource.DETAIL, FragmentSource.OWNER, FragmentSource.EVENTS)
    oks: Dict[FragmentSource, bool] = {}
    errors: List[str] = []
    collected: List[PropertyFragment] = []
    for label, outcome in zip(labels, outcomes):
        oks[label] = False
        result = _as_result(outcome, str(label))
        if not result.ok or result.data is None:
            errors.append(f"{label}:{result.kind or FailureKind.NOT_FOUND}")
            continue
        fragments = normalize_payload(
            TaggedPayload(label, result.data), identity_hint=record.identity
        )
        usable = [f for f in fragments if not f.normalization_failed]
        if not usable:
            errors.append(f"{label}:normalization_failed")
            continue
        fragment = usable[0]
        if fragment.identity and fragment.identity != record.identity:
            logger.warning(
                "enrichment %s for %s returned identity %s; dropped",
                label,
                record.identity,
                fragment.identity,
            )
            errors.append(f"{label}:identity_mismatch")
            continue
        oks[label] = True
        collected.append(fragment)

    # Equal trust keeps the first value; the events assessment is the live one.
    collected.sort(key=lambda f: f.source != FragmentSource.EVENTS)

    report = EnrichmentReport(
        identity=record.identity,
        detail_ok=oks[FragmentSource.DETAIL],
        owner_ok=oks[FragmentSource.OWNER],
        events_ok=oks[FragmentSource.EVENTS],
        errors=tuple(errors),
    )
    if report.partial:
        logger.info(
            "enrichment_partial identity=%s errors=%s",
            record.identity,
            ",".join(report.errors),
        )
    return collected, report


async def enrich(
    record: CanonicalProperty,
    source: Any,
) -> Tuple[CanonicalProperty, EnrichmentReport]:
    """Fetch enrichment and merge whatever succeeded into ``record``.

    A failed detail call leaves the record at summary completeness.
    """
    fragments, report = await fetch_enrichment(record, source)
    merged = merge_all(record, fragments)
    return merged or record, report
