"""Unit tests for the path-level diff engine (analyze / apply)."""

from __future__ import annotations

import copy
import string

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from rewind.diff.engine import (
    REMOVED,
    CyclicStateError,
    DiffError,
    DiffTypeMismatch,
    analyze,
    apply,
)

# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

_keys = st.text(alphabet=string.ascii_lowercase, min_size=1, max_size=4)
_leaves = st.none() | st.booleans() | st.integers(-1000, 1000) | st.text(max_size=8)
_states = st.recursive(
    _leaves,
    lambda children: st.lists(children, max_size=4) | st.dictionaries(_keys, children, max_size=4),
    max_leaves=20,
)


# ---------------------------------------------------------------------------
# analyze
# ---------------------------------------------------------------------------


class TestAnalyze:
    def test_changed_leaf_reports_single_path(self) -> None:
        """A single changed key yields one path with both patch directions."""
        result = analyze({"a": 1, "b": 2}, {"a": 1, "b": 3})
        assert result.paths == ["b"]
        assert result.forward_patch == {"b": 3}
        assert result.reverse_patch == {"b": 2}

    def test_identical_states_are_empty(self) -> None:
        """Structurally equal states produce no paths."""
        result = analyze({"a": [1, {"b": 2}]}, {"a": [1, {"b": 2}]})
        assert result.is_empty
        assert result.forward_patch == {}

    def test_nested_paths_are_dot_joined(self) -> None:
        """Nested changes use dot-joined paths and decimal list indices."""
        result = analyze({"user": {"tags": ["x", "y"]}}, {"user": {"tags": ["x", "z"]}})
        assert result.paths == ["user.tags.1"]

    def test_added_and_removed_keys_use_sentinel(self) -> None:
        """Added keys are REMOVED on the reverse side and vice versa."""
        result = analyze({"old": 1}, {"new": 2})
        assert result.forward_patch == {"new": 2, "old": REMOVED}
        assert result.reverse_patch == {"new": REMOVED, "old": 1}

    def test_paths_follow_sorted_key_order(self) -> None:
        """Keys are visited in sorted order regardless of insertion order."""
        result = analyze({"c": 1, "a": 1, "b": 1}, {"b": 2, "c": 2, "a": 2})
        assert result.paths == ["a", "b", "c"]

    def test_type_change_is_a_leaf_change(self) -> None:
        """A dict replaced by a list is recorded at the container's path."""
        result = analyze({"v": {"x": 1}}, {"v": [1]})
        assert result.paths == ["v"]

    def test_bool_and_int_are_distinguished(self) -> None:
        """True and 1 compare equal but are different values in history."""
        result = analyze({"flag": 1}, {"flag": True})
        assert result.paths == ["flag"]

    def test_root_change_uses_empty_path(self) -> None:
        """Two different scalars differ at the root path."""
        result = analyze(1, 2)
        assert result.paths == [""]
        assert apply(1, result.forward_patch) == 2

    def test_patch_values_do_not_alias_inputs(self) -> None:
        """Mutating the input after analysis does not change the patch."""
        nxt = {"items": {"a": [1]}}
        result = analyze({}, nxt)
        nxt["items"]["a"].append(2)
        assert result.forward_patch == {"items": {"a": [1]}}

    def test_non_string_key_raises_mismatch(self) -> None:
        """Integer mapping keys cannot be path segments."""
        with pytest.raises(DiffTypeMismatch):
            analyze({1: "a"}, {1: "b"})

    def test_dotted_key_raises_mismatch(self) -> None:
        """A key containing the separator cannot be a path segment."""
        with pytest.raises(DiffTypeMismatch):
            analyze({"a.b": 1}, {"a.b": 2})

    def test_cycle_raises_cyclic_state_error(self) -> None:
        """A self-referencing container is rejected."""
        prev: dict = {"a": 1}
        prev["self"] = prev
        nxt: dict = {"a": 2}
        nxt["self"] = nxt
        with pytest.raises(CyclicStateError):
            analyze(prev, nxt)

    def test_errors_share_base_class(self) -> None:
        """Both failure modes can be caught as DiffError."""
        assert issubclass(DiffTypeMismatch, DiffError)
        assert issubclass(CyclicStateError, DiffError)

    def test_shared_subtree_is_not_a_cycle(self) -> None:
        """The same object reachable twice (no loop) diffs normally."""
        shared = {"x": 1}
        result = analyze({"a": shared, "b": shared}, {"a": shared, "b": {"x": 2}})
        assert result.paths == ["b.x"]


# ---------------------------------------------------------------------------
# apply
# ---------------------------------------------------------------------------


class TestApply:
    def test_forward_and_reverse_scenario(self) -> None:
        """The b: 2 -> 3 change applies forward and back."""
        prev, nxt = {"a": 1, "b": 2}, {"a": 1, "b": 3}
        result = analyze(prev, nxt)
        moved = apply(prev, result.forward_patch)
        assert moved == {"a": 1, "b": 3}
        assert apply(moved, result.reverse_patch) == {"a": 1, "b": 2}

    def test_does_not_mutate_input(self) -> None:
        """apply returns a new state and leaves the input untouched."""
        prev = {"a": {"b": [1, 2]}}
        snapshot = copy.deepcopy(prev)
        apply(prev, {"a.b.0": 9})
        assert prev == snapshot

    def test_unchanged_branches_are_shared(self) -> None:
        """Branches off the changed path keep their identity."""
        prev = {"keep": {"big": list(range(10))}, "edit": {"v": 1}}
        result = apply(prev, {"edit.v": 2})
        assert result["keep"] is prev["keep"]
        assert result["edit"] is not prev["edit"]

    def test_written_values_are_cloned(self) -> None:
        """The returned state never aliases values stored in the patch."""
        patch = {"items": [1, 2]}
        result = apply({}, patch)
        result["items"].append(3)
        assert patch == {"items": [1, 2]}

    def test_empty_patch_returns_state(self) -> None:
        state = {"a": 1}
        assert apply(state, {}) is state

    def test_list_growth_and_shrink(self) -> None:
        """Appended items are written in order; dropped items are removed from the end."""
        grow = analyze([1], [1, 2, 3])
        assert apply([1], grow.forward_patch) == [1, 2, 3]
        assert apply([1, 2, 3], grow.reverse_patch) == [1]

    def test_tuple_stays_tuple(self) -> None:
        result = analyze({"t": (1, 2)}, {"t": (1, 5, 6)})
        applied = apply({"t": (1, 2)}, result.forward_patch)
        assert applied == {"t": (1, 5, 6)}
        assert isinstance(applied["t"], tuple)

    def test_missing_container_raises_mismatch(self) -> None:
        """A nested path through a missing key does not fit the state."""
        with pytest.raises(DiffTypeMismatch):
            apply({"a": 1}, {"missing.x": 1})

    def test_nested_path_through_scalar_raises_mismatch(self) -> None:
        with pytest.raises(DiffTypeMismatch):
            apply({"a": 1}, {"a.x": 1})

    def test_index_past_end_raises_mismatch(self) -> None:
        with pytest.raises(DiffTypeMismatch):
            apply([1], {"5": 2})


# ---------------------------------------------------------------------------
# Round-trip law
# ---------------------------------------------------------------------------


class TestRoundTrip:
    @given(prev=_states, nxt=_states)
    @settings(max_examples=200, deadline=None)
    def test_forward_then_reverse_restores_original(self, prev, nxt) -> None:
        """apply(apply(s, fwd), rev) equals s, and apply(s, fwd) equals next."""
        result = analyze(prev, nxt)
        moved = apply(prev, result.forward_patch)
        assert moved == nxt
        assert apply(moved, result.reverse_patch) == prev

    @given(state=_states)
    @settings(max_examples=100, deadline=None)
    def test_self_diff_is_empty(self, state) -> None:
        assert analyze(state, copy.deepcopy(state)).is_empty
