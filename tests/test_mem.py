import pytest

from nowsec.mem import MemoryRecord, MemoryTracker


def test_add_and_list_records():
    tracker = MemoryTracker(8)
    tracker.add_record(0x1000, 10, "alpha", 12)
    tracker.add_record(0x2000, 20, "beta", 34)
    records = tracker.records()
    assert [(r.ptr, r.size, r.tag, r.line) for r in records] == [
        (0x1000, 10, "alpha", 12),
        (0x2000, 20, "beta", 34),
    ]
    assert len(tracker) == 2
    assert all(isinstance(r, MemoryRecord) for r in records)


@pytest.mark.parametrize(
    "ptr, size, tag",
    [(0, 10, "tag"), (0x10, 0, "tag"), (0x10, 10, "")],
)
def test_incomplete_records_are_ignored(ptr, size, tag):
    tracker = MemoryTracker(4)
    tracker.add_record(ptr, size, tag, 1)
    assert tracker.records() == []
    assert len(tracker) == 0


def test_remove_record_frees_slot_and_reuses_it():
    tracker = MemoryTracker(4)
    tracker.add_record(0x1, 5, "a", 1)
    tracker.add_record(0x2, 6, "b", 2)
    tracker.remove_record(0x1, "a", 3)
    assert [r.ptr for r in tracker.records()] == [0x2]
    tracker.add_record(0x3, 7, "c", 4)
    assert [r.ptr for r in tracker.records()] == [0x3, 0x2]


def test_remove_unknown_or_null_pointer_is_harmless():
    tracker = MemoryTracker(4)
    tracker.add_record(0x1, 5, "a", 1)
    tracker.remove_record(0x99, "a", 2)
    tracker.remove_record(0, "a", 3)
    assert [r.ptr for r in tracker.records()] == [0x1]


def test_remove_only_first_duplicate():
    tracker = MemoryTracker(4)
    tracker.add_record(0x1, 5, "a", 1)
    tracker.add_record(0x1, 9, "a", 2)
    tracker.remove_record(0x1, "a", 3)
    assert [r.size for r in tracker.records()] == [9]


def test_full_tracker_drops_new_records():
    tracker = MemoryTracker(2)
    tracker.add_record(0x1, 1, "a", 1)
    tracker.add_record(0x2, 2, "a", 2)
    tracker.add_record(0x3, 3, "a", 3)
    assert [r.ptr for r in tracker.records()] == [0x1, 0x2]
    assert len(tracker) == tracker.capacity


def test_total_size_matches_records():
    tracker = MemoryTracker(8)
    for ptr, size in [(0x1, 3), (0x2, 4), (0x3, 5)]:
        tracker.add_record(ptr, size, "t", ptr)
    tracker.remove_record(0x2, "t", 0)
    assert tracker.total_size() == sum(r.size for r in tracker.records())
    assert tracker.total_size() == 8


def test_format_record_empty():
    assert MemoryTracker(4).format_record() == "Memory record is empty"


def test_format_record_lists_entries_and_summary():
    tracker = MemoryTracker(4)
    tracker.add_record(0x10, 10, "alpha", 7)
    tracker.add_record(0x20, 20, "beta", 9)
    lines = tracker.format_record().splitlines()
    assert len(lines) == 3
    assert "<alpha: 7>" in lines[0] and "size: 10" in lines[0]
    assert "<beta: 9>" in lines[1] and "size: 20" in lines[1]
    assert lines[2] == "Memory record, num: 2, size: 30"


def test_invalid_capacity():
    with pytest.raises(ValueError):
        MemoryTracker(0)