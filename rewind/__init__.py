"""rewind -- differential undo/redo history engine.

Exports:
    create_history_stack -- Factory for independent HistoryStack instances.
    HistoryStack         -- Past/future orchestrator (push/undo/redo/batch).
    HistoryOptions       -- Per-stack behaviour switches and budgets.
    Action               -- A reversible state transition.
"""

from __future__ import annotations

__version__ = "0.3.0"

from rewind.history import ActionExecutionError, HistoryStack, create_history_stack
from rewind.models import Action, HistoryOptions

__all__ = [
    "Action",
    "ActionExecutionError",
    "HistoryOptions",
    "HistoryStack",
    "__version__",
    "create_history_stack",
]
