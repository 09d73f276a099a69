"""Unit tests for size estimation, trimming, optimization and garbage collection."""

from __future__ import annotations

import json

import pytest

from rewind.actions.factory import create_action
from rewind.memory.manager import (
    CLOSURE_OVERHEAD_BYTES,
    UNSERIALIZABLE_ARG_BYTES,
    SelectiveCloneCache,
    adjusted_gc_interval,
    estimate_size,
    estimate_total,
    garbage_collect,
    optimize_action,
    optimize_for_storage,
    trim_by_count,
    trim_by_memory,
)
from rewind.models.history import Action


def _action(label: str | None = None, *args, paths: list[str] | None = None) -> Action[int]:
    return Action(
        do_fn=lambda: 1,
        undo_fn=lambda: 0,
        label=label,
        args=list(args),
        target_paths=paths or [],
    )


def _sized(size: int, label: str = "x") -> Action[int]:
    action = _action(label)
    action.estimated_size = size
    return action


# ---------------------------------------------------------------------------
# Estimation
# ---------------------------------------------------------------------------


class TestEstimateSize:
    def test_formula(self) -> None:
        """args JSON x2 + label x2 + paths x2 + closure overhead."""
        args = [{"a": 1}, "text"]
        action = _action("label", *args, paths=["a.b", "c"])
        expected = len(json.dumps(args)) * 2 + len("label") * 2 + (3 + 1) * 2 + CLOSURE_OVERHEAD_BYTES
        assert estimate_size(action) == expected

    def test_result_is_cached(self) -> None:
        action = _action("a")
        first = estimate_size(action)
        action.label = "a much longer label"
        assert estimate_size(action) == first

    def test_unserializable_args_use_fixed_cost(self) -> None:
        action = _action(None, object(), object())
        assert estimate_size(action) == 2 * UNSERIALIZABLE_ARG_BYTES + CLOSURE_OVERHEAD_BYTES


class TestEstimateTotal:
    def test_totals_and_largest(self) -> None:
        past = [_sized(100, "small"), _sized(300, "big")]
        future = [_sized(200, "mid")]
        usage = estimate_total(past, future)
        assert usage.past_size == 2
        assert usage.future_size == 1
        assert usage.estimated_bytes == 600
        assert usage.action_count == 3
        assert usage.average_action_size == 200
        assert usage.largest_action is not None
        assert usage.largest_action.label == "big"

    def test_empty_lists(self) -> None:
        usage = estimate_total([], [])
        assert usage.estimated_bytes == 0
        assert usage.average_action_size == 0
        assert usage.largest_action is None


# ---------------------------------------------------------------------------
# Trimming
# ---------------------------------------------------------------------------


class TestTrim:
    def test_trim_by_memory_drops_oldest_first(self) -> None:
        past = [_sized(100, "a"), _sized(100, "b"), _sized(100, "c")]
        trimmed = trim_by_memory(past, 250)
        assert [action.label for action in trimmed] == ["b", "c"]

    def test_trim_by_memory_keeps_last_entry(self) -> None:
        past = [_sized(1000, "a"), _sized(1000, "b")]
        trimmed = trim_by_memory(past, 10)
        assert [action.label for action in trimmed] == ["b"]

    def test_trim_by_memory_does_not_mutate_input(self) -> None:
        past = [_sized(100), _sized(100)]
        trim_by_memory(past, 0)
        assert len(past) == 2

    def test_trim_by_count(self) -> None:
        past = [_sized(1, str(n)) for n in range(5)]
        assert [a.label for a in trim_by_count(past, 2)] == ["3", "4"]
        assert len(trim_by_count(past, None)) == 5


# ---------------------------------------------------------------------------
# Optimization
# ---------------------------------------------------------------------------


class TestOptimize:
    def test_optimize_action_hashes_mapping_args(self) -> None:
        action = create_action(lambda s: s, lambda s: s, {"big": list(range(50))}, 3, label="edit")
        optimized = optimize_action(action)
        assert optimized.args[0]["_optimized"] is True
        assert optimized.args[0]["_type"] == "object"
        assert len(optimized.args[0]["_hash"]) == 16
        assert optimized.args[1] == 3
        assert optimized.metadata is not None and optimized.metadata.compressed
        assert estimate_size(optimized) < estimate_size(action)

    def test_optimize_action_keeps_replay_behaviour(self) -> None:
        action = create_action(lambda s: s["v"], lambda s: -s["v"], {"v": 7})
        optimized = optimize_action(action)
        assert optimized.do() == 7
        assert optimized.undo() == -7

    def test_compressed_action_is_returned_unchanged(self) -> None:
        optimized = optimize_action(_action("a", {"k": 1}))
        assert optimize_action(optimized) is optimized

    def test_optimize_for_storage_below_threshold_is_identity(self) -> None:
        action = _action("small", [1, 2])
        assert optimize_for_storage(action, threshold_kb=100) is action

    def test_optimize_for_storage_stubs_containers(self) -> None:
        big = {"blob": "x" * 4096}
        action = create_action(lambda b, n: n, lambda b, n: 0, big, 5, label="upload")
        optimized = optimize_for_storage(action, threshold_kb=1)
        assert optimized.args == [{"_type": "dict", "_ref": True}, 5]
        assert optimized.metadata is not None
        assert optimized.metadata.compressed
        assert optimized.metadata.hash is not None
        assert optimized.do() == 5


# ---------------------------------------------------------------------------
# Garbage collection
# ---------------------------------------------------------------------------


class TestGarbageCollect:
    def test_future_entries_are_optimized(self) -> None:
        future = [_action("f", {"k": "v" * 100})]
        result = garbage_collect([], future)
        assert result.future[0].metadata is not None
        assert result.future[0].metadata.compressed

    def test_count_cap_applies_without_memory_limit(self) -> None:
        past = [_action(str(n)) for n in range(10)]
        result = garbage_collect(past, [], max_history=4)
        assert [a.label for a in result.past] == ["6", "7", "8", "9"]
        assert result.evicted == 6

    def test_memory_budget_respected(self) -> None:
        """After GC the total fits the budget or only one past entry remains."""
        past = [create_action(lambda: 0, lambda: 0, "p" * 2000, label=f"a{n}") for n in range(20)]
        budget = 20_000
        result = garbage_collect(past, [], memory_based_limit=True, max_memory_bytes=budget)
        total = estimate_total(result.past, result.future).estimated_bytes
        assert total <= budget or len(result.past) == 1

    def test_long_history_truncates_old_args(self) -> None:
        past = [_action(f"a{n}", 1, 2, 3, 4) for n in range(60)]
        result = garbage_collect(past, [])
        assert all(len(a.args) == 2 for a in result.past[:-20])
        assert all(len(a.args) == 4 for a in result.past[-20:])

    def test_fallback_evicts_oldest_tenth(self) -> None:
        """Little freed with more than 100 entries: the oldest 10% go."""
        past = [_action(f"a{n}") for n in range(120)]
        result = garbage_collect(past, [])
        assert len(result.past) == 108
        assert result.past[0].label == "a12"

    def test_inputs_are_not_mutated(self) -> None:
        past = [_action(str(n)) for n in range(5)]
        garbage_collect(past, [], max_history=1)
        assert len(past) == 5


class TestAdjustedInterval:
    @pytest.mark.parametrize(
        ("length", "expected"),
        [(250, 500.0), (150, 750.0), (10, 2000.0), (50, 1000.0), (100, 1000.0), (20, 1000.0)],
    )
    def test_interval_scaling(self, length: int, expected: float) -> None:
        assert adjusted_gc_interval(length, 1000) == expected


# ---------------------------------------------------------------------------
# Selective clone cache
# ---------------------------------------------------------------------------


class TestSelectiveCloneCache:
    def test_same_state_returns_cached_clone(self) -> None:
        cache = SelectiveCloneCache()
        state = {"a": {"b": 1}, "c": 2}
        first = cache.clone(state, ["a.b"])
        assert first == {"a": {"b": 1}}
        assert cache.clone(state, ["a.b"]) is first

    def test_new_state_object_recomputes(self) -> None:
        cache = SelectiveCloneCache()
        first = cache.clone({"a": 1}, ["a"])
        second = cache.clone({"a": 2}, ["a"])
        assert first == {"a": 1}
        assert second == {"a": 2}

    def test_without_paths_returns_state(self) -> None:
        cache = SelectiveCloneCache()
        state = {"a": 1}
        assert cache.clone(state, None) is state

    def test_reset_drops_memo(self) -> None:
        cache = SelectiveCloneCache()
        state = {"a": 1}
        first = cache.clone(state, ["a"])
        cache.reset()
        assert cache.clone(state, ["a"]) is not first
