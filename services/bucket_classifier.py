"""Derive a trip's pipeline stage from its verification status and item counts."""

from typing import FrozenSet

from models.card import Bucket, TX_APPROVED

# Stages the importer can assign on its own
AUTOMATIC_BUCKETS: FrozenSet[Bucket] = frozenset({
    Bucket.PENDING,
    Bucket.APPROVED_NOT_TA,
    Bucket.APPROVED_TA_IN_PROGRESS,
    Bucket.TA_COMPLETED,
})

# Downstream physical steps; only a person moves a card here
MANUAL_ONLY_BUCKETS: FrozenSet[Bucket] = frozenset(set(Bucket) - AUTOMATIC_BUCKETS)


def classify(status: str, accepted: int, ready: int) -> Bucket:
    """
    Classify a trip into a bucket.

    Args:
        status: Trip Verification Status from the CSV
        accepted: Items Accepted
        ready: Items Ready to process (clamped to accepted upstream)

    Returns:
        One of the four automatic buckets
    """
    if status != TX_APPROVED:
        return Bucket.PENDING
    if ready == 0:
        return Bucket.APPROVED_NOT_TA
    if 0 < ready < accepted:
        return Bucket.APPROVED_TA_IN_PROGRESS
    if ready == accepted:
        return Bucket.TA_COMPLETED
    # ready > accepted or negative counts never survive projection
    return Bucket.PENDING


def is_automatic(bucket: Bucket) -> bool:
    """Check whether the importer could have produced this bucket."""
    return bucket in AUTOMATIC_BUCKETS
