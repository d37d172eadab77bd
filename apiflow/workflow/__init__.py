"""Workflow execution module."""

from .actions import ActionDispatcher, ControlState
from .criteria import CriteriaEvaluator
from .engine import RunResult, WorkflowEngine

__all__ = ['ActionDispatcher', 'ControlState', 'CriteriaEvaluator', 'RunResult', 'WorkflowEngine']
