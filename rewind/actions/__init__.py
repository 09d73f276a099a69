"""Action factory -- reversible actions from closures, diffs or batches."""

from rewind.actions.factory import compose_batch, create_action, create_diff_action

__all__ = ["compose_batch", "create_action", "create_diff_action"]
