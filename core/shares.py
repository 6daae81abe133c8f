"""
core/shares.py -- Split, merge, and expire share relations.

A logical Share names one secret, one expiry, and many targets. The metadata
store keeps one relation per target so that (secret, target) can carry a
uniqueness constraint. These pure functions translate between the two shapes:

  split()  Share -> [ShareRelation, ...]      (one per target)
  merge()  [ShareRelation, ...] -> [Share, ...] grouped on (owner, key, until)

Two relations merge only if owner, key, AND expiry instant are identical.
Two owners sharing overlapping target sets never merge, and one secret
shared with different expiries yields one Share per expiry.

reap_expired() only partitions; it does not delete. Every read path that
calls it must delete the expired half from the metadata store before it
returns anything to its caller.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta

from core.errors import InvalidInput
from core.models import Share, ShareRelation
from core.validation import validate_duration

DEFAULT_SHARE_DAYS = 30


def split(share: Share) -> list[ShareRelation]:
    """Expand a logical share into one relation per target."""
    return [ShareRelation(owner=share.owner, key=share.key, target=t, until=share.until) for t in share.targets]


def merge(relations: Iterable[ShareRelation]) -> list[Share]:
    """Group relations into logical shares keyed on (owner, key, until).

    Output order is the order in which each group was first seen; targets
    keep their order within a group.
    """
    groups: dict[tuple[str, str, datetime | None], Share] = {}
    for rel in relations:
        group_key = (rel.owner, rel.key, rel.until)
        share = groups.get(group_key)
        if share is None:
            share = groups[group_key] = Share(owner=rel.owner, key=rel.key, until=rel.until)
        share.targets.append(rel.target)
    return list(groups.values())


def is_expired(relation: ShareRelation, now: datetime) -> bool:
    return relation.until is not None and relation.until <= now


def reap_expired(relations: Iterable[ShareRelation], now: datetime) -> tuple[list[ShareRelation], list[ShareRelation]]:
    """Partition relations into (live, expired) as of `now`."""
    live: list[ShareRelation] = []
    expired: list[ShareRelation] = []
    for rel in relations:
        (expired if is_expired(rel, now) else live).append(rel)
    return live, expired


def resolve_until(
    now: datetime,
    until: datetime | None = None,
    duration: timedelta | None = None,
    default_days: int = DEFAULT_SHARE_DAYS,
) -> datetime | None:
    """Pick the expiry instant for a new share.

    An explicit `until` wins; otherwise now + duration; otherwise now +
    default_days. default_days == 0 makes the share open-ended (None).
    An `until` in the past is accepted -- the share is simply never visible.
    """
    if until is not None and duration is not None:
        raise InvalidInput("give either an absolute expiry or a duration, not both")
    if until is not None:
        if until.tzinfo is None:
            raise InvalidInput("share expiry must be timezone-aware")
        return until
    if duration is not None:
        return now + validate_duration(duration)
    if default_days <= 0:
        return None
    return now + timedelta(days=default_days)
