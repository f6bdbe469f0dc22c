"""Tests for bucket classification."""

import pytest

from models.card import Bucket
from services.bucket_classifier import AUTOMATIC_BUCKETS, MANUAL_ONLY_BUCKETS, classify, is_automatic


class TestClassify:
    """Classification table: status x accepted x ready."""

    @pytest.mark.parametrize("status,accepted,ready,expected", [
        ("Pending", 5, 5, Bucket.PENDING),
        ("", 0, 0, Bucket.PENDING),
        ("tx approved", 5, 5, Bucket.PENDING),
        ("TX Approved", 5, 0, Bucket.APPROVED_NOT_TA),
        ("TX Approved", 0, 0, Bucket.APPROVED_NOT_TA),
        ("TX Approved", 5, 3, Bucket.APPROVED_TA_IN_PROGRESS),
        ("TX Approved", 5, 5, Bucket.TA_COMPLETED),
        ("TX Approved", 1, 1, Bucket.TA_COMPLETED),
    ])
    def test_table(self, status, accepted, ready, expected):
        assert classify(status, accepted, ready) == expected

    def test_only_automatic_buckets(self):
        """The importer never produces a downstream stage."""
        for accepted in range(4):
            for ready in range(accepted + 1):
                for status in ("TX Approved", "Rejected"):
                    assert classify(status, accepted, ready) in AUTOMATIC_BUCKETS


class TestBucketSets:
    def test_partition(self):
        assert AUTOMATIC_BUCKETS | MANUAL_ONLY_BUCKETS == set(Bucket)
        assert not AUTOMATIC_BUCKETS & MANUAL_ONLY_BUCKETS

    def test_is_automatic(self):
        assert is_automatic(Bucket.TA_COMPLETED)
        assert not is_automatic(Bucket.LABELED)
