# tests/test_batching.py
from feedpilot.batching import batch_chars, pack_batches, truncate


def _size(n):
    return n


def test_empty_input_gives_no_batches():
    assert pack_batches([], _size, budget=100) == []


def test_batches_stay_within_budget_and_keep_order():
    items = [30, 40, 20, 50, 10, 60, 5]
    batches = pack_batches(items, _size, budget=100)
    assert [x for b in batches for x in b] == items
    assert all(batch_chars(b, _size) <= 100 for b in batches)
    assert batches == [[30, 40, 20], [50, 10], [60, 5]]


def test_oversized_item_gets_its_own_batch():
    batches = pack_batches([10, 500, 10], _size, budget=100)
    assert batches == [[10], [500], [10]]


def test_large_backlog_splits_on_char_budget_only():
    # 235 articles truncated to 4000 chars against a 200k budget
    batches = pack_batches([4000] * 235, _size, budget=200_000)
    assert [len(b) for b in batches] == [50, 50, 50, 50, 35]


def test_truncate():
    assert truncate("", 10) == ""
    assert truncate(None, 10) == ""
    assert truncate("abcdef", 4) == "abcd"
    assert truncate("abc", 4) == "abc"
