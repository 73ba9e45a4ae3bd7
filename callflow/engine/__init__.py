"""
Engine package - Core workflow orchestration components.
"""

from callflow.engine.expressions import Condition, Operator, assign, evaluate, resolve
from callflow.engine.policy import CatchPolicy, PolicyAction, RetryPolicy, decide
from callflow.engine.steps import ChoiceRule, ChoiceStep, PassStep, TaskStep, WaitStep
from callflow.engine.graph import GraphDefinition, StateGraph, build, validate
from callflow.engine.history import EventKind, HistoryEntry, RunHistory
from callflow.engine.state import RunError, RunState, RunStatus, RunSummary
from callflow.engine.timer import Timer, default_timer
from callflow.engine.invoker import TaskInvoker
from callflow.engine.executor import RunExecutor, execute_graph

__all__ = [
    "Condition",
    "Operator",
    "assign",
    "evaluate",
    "resolve",
    "CatchPolicy",
    "PolicyAction",
    "RetryPolicy",
    "decide",
    "ChoiceRule",
    "ChoiceStep",
    "PassStep",
    "TaskStep",
    "WaitStep",
    "GraphDefinition",
    "StateGraph",
    "build",
    "validate",
    "EventKind",
    "HistoryEntry",
    "RunHistory",
    "RunError",
    "RunState",
    "RunStatus",
    "RunSummary",
    "Timer",
    "default_timer",
    "TaskInvoker",
    "RunExecutor",
    "execute_graph",
]
