"""
Workflows package - Sample workflow implementations.
"""

from callflow.workflows.call_handler import (
    CALL_HANDLER_GRAPH_ID,
    create_call_handler_definition,
    register_call_handler_workflow,
)

__all__ = [
    "CALL_HANDLER_GRAPH_ID",
    "create_call_handler_definition",
    "register_call_handler_workflow",
]
