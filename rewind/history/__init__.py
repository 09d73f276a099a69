"""History stack orchestration.

Submodules:
    stack -- HistoryStack (push/undo/redo/batch/seek/clear/rebuild),
             ActionExecutionError and the create_history_stack factory.
"""

from rewind.history.stack import (
    ActionExecutionError,
    HistoryStack,
    create_history_stack,
    create_history_stack_from_config,
)

__all__ = [
    "ActionExecutionError",
    "HistoryStack",
    "create_history_stack",
    "create_history_stack_from_config",
]
