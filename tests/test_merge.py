"""Tests for the pure snapshot merge."""

import itertools

import pytest

from property_chat.core.errors import ErrorKind, InvariantViolation
from property_chat.services.merge import assert_strictly_ordered, merge_snapshots, order_snapshot

from conftest import make_message


class TestMergeSnapshots:
    """Tests for merge_snapshots."""

    def test_empty(self):
        """Test merging two empty snapshots."""
        assert merge_snapshots([], []) == []

    def test_interleaves_by_timestamp(self):
        """Test sent and received messages come out in time order."""
        sent = [make_message("a", 1), make_message("c", 3)]
        received = [make_message("b", 2, sender="B1", receiver="S")]
        assert [m.id for m in merge_snapshots(sent, received)] == ["a", "b", "c"]

    def test_deduplicates_by_id(self):
        """Test a message present in both snapshots appears once."""
        message = make_message("a", 1, sender="S", receiver="S")
        assert merge_snapshots([message], [message]) == [message]

    def test_id_breaks_timestamp_ties(self):
        """Test messages written in the same clock tick are ordered by id."""
        sent = [make_message("b", 5)]
        received = [make_message("a", 5, sender="B1", receiver="S")]
        assert [m.id for m in merge_snapshots(sent, received)] == ["a", "b"]

    def test_lagging_read_flag_does_not_win(self):
        """Test the fresher read state survives whichever stream delivered it."""
        stale = make_message("a", 1)
        fresh = make_message("a", 1, read=True)
        assert merge_snapshots([stale], [fresh])[0].read is True
        assert merge_snapshots([fresh], [stale])[0].read is True

    def test_does_not_mutate_inputs(self):
        """Test the raw snapshot buffers are only read."""
        sent = [make_message("c", 3), make_message("a", 1)]
        received = [make_message("b", 2, sender="B1", receiver="S")]
        before = (list(sent), list(received))
        merge_snapshots(sent, received)
        assert (sent, received) == before

    def test_idempotent(self):
        """Test re-running on the same snapshots yields the same output."""
        sent = [make_message("a", 1), make_message("c", 3)]
        received = [make_message("b", 2, sender="B1", receiver="S"), make_message("a", 1)]
        assert merge_snapshots(sent, received) == merge_snapshots(sent, received)

    def test_delivery_order_does_not_matter(self):
        """Test every split and order of the same message set merges identically."""
        messages = [
            make_message("m1", 1),
            make_message("m2", 2, sender="B1", receiver="S"),
            make_message("m3", 2),
            make_message("m4", 4, sender="B1", receiver="S"),
        ]
        expected = sorted(messages, key=lambda m: (m.timestamp, m.id))
        for permutation in itertools.permutations(messages):
            for cut in range(len(permutation) + 1):
                sent, received = permutation[:cut], permutation[cut:]
                assert merge_snapshots(sent, received) == expected
                assert merge_snapshots(received, sent) == expected


class TestOrderSnapshot:
    """Tests for client-side ordering of unordered snapshots."""

    def test_sorts_and_dedups(self):
        unordered = [make_message("c", 3), make_message("a", 1), make_message("c", 3)]
        assert [m.id for m in order_snapshot(unordered)] == ["a", "c"]


class TestOrderingInvariant:
    """Tests for assert_strictly_ordered."""

    def test_accepts_merged_output(self):
        merged = merge_snapshots([make_message("a", 1), make_message("b", 1), make_message("c", 2)])
        assert_strictly_ordered(merged)

    def test_rejects_out_of_order(self):
        """Test a non-monotonic view fails loudly."""
        with pytest.raises(InvariantViolation) as excinfo:
            assert_strictly_ordered([make_message("b", 2), make_message("a", 1)])
        assert excinfo.value.kind is ErrorKind.INVARIANT

    def test_rejects_duplicates(self):
        message = make_message("a", 1)
        with pytest.raises(InvariantViolation):
            assert_strictly_ordered([message, message])
