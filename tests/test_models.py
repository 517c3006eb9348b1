"""Tests for queue item models and the id scheme."""
import threading

import pytest
from pydantic import ValidationError

from models.schemas import (
    ItemIdGenerator, QueueAction, QueueItem, QueueSubmission, new_item_id,
)


class TestItemIdGenerator:
    def test_ids_increase_within_same_millisecond(self):
        gen = ItemIdGenerator(clock=lambda: 1_700_000_000_000)
        ids = [gen.next_id() for _ in range(50)]
        assert ids == sorted(ids)
        assert len(set(ids)) == 50

    def test_ids_increase_when_clock_goes_backwards(self):
        ticks = iter([2_000, 1_000, 1_000, 3_000])
        gen = ItemIdGenerator(clock=lambda: next(ticks))
        ids = [gen.next_id() for _ in range(4)]
        assert ids == sorted(ids)
        assert ids[1].startswith("0000000002000-0001")
        assert ids[3].startswith("0000000003000-0000")

    def test_sequence_overflow_advances_millisecond(self):
        gen = ItemIdGenerator(clock=lambda: 5)
        ids = [gen.next_id() for _ in range(10_001)]
        assert ids[-1].startswith("0000000000006-0000")
        assert ids == sorted(ids)

    def test_id_shape(self):
        item_id = new_item_id()
        ms, seq, suffix = item_id.split("-")
        assert len(ms) == 13 and ms.isdigit()
        assert len(seq) == 4 and seq.isdigit()
        assert len(suffix) == 8

    def test_concurrent_generation_is_unique_and_ordered_per_thread(self):
        gen = ItemIdGenerator()
        results: list[list[str]] = [[] for _ in range(4)]

        def worker(bucket):
            for _ in range(200):
                bucket.append(gen.next_id())

        threads = [threading.Thread(target=worker, args=(b,)) for b in results]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        all_ids = [i for bucket in results for i in bucket]
        assert len(set(all_ids)) == 800
        for bucket in results:
            assert bucket == sorted(bucket)


class TestQueueSubmission:
    def test_defaults_to_append(self):
        sub = QueueSubmission(content="hi")
        assert sub.action == QueueAction.APPEND
        assert sub.collection is None

    def test_null_action_falls_back_to_append(self):
        sub = QueueSubmission.model_validate({"content": "hi", "action": None})
        assert sub.action == QueueAction.APPEND

    @pytest.mark.parametrize("content", ["", "   ", "\n\t"])
    def test_blank_content_rejected(self, content):
        with pytest.raises(ValidationError):
            QueueSubmission(content=content)

    def test_content_kept_untrimmed(self):
        sub = QueueSubmission(content="  # Title\n")
        assert sub.content == "  # Title\n"

    def test_unknown_action_rejected(self):
        with pytest.raises(ValidationError):
            QueueSubmission.model_validate({"content": "x", "action": "delete"})


class TestQueueItem:
    def test_from_submission_stamps_id_and_timestamp(self):
        sub = QueueSubmission(content="note", action="lifelog", collection="Journal", title="T")
        item = QueueItem.from_submission(sub)
        assert item.id
        assert item.created_at.endswith("Z")
        assert item.action == QueueAction.LIFELOG
        assert item.collection == "Journal"

    def test_wire_uses_created_at_camel_case(self):
        item = QueueItem(id="1", content="x")
        wire = item.to_wire()
        assert "createdAt" in wire
        assert "created_at" not in wire
        assert wire["action"] == "append"

    def test_wire_round_trip_preserves_fields(self):
        item = QueueItem(id="1", content="x", action=QueueAction.CREATE, title="New")
        assert QueueItem.from_wire(item.to_wire()) == item

    def test_items_are_immutable(self):
        item = QueueItem(id="1", content="x")
        with pytest.raises(ValidationError):
            item.content = "changed"
