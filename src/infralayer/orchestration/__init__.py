"""Orchestration package: plan, apply and output resolution."""

from infralayer.orchestration.engine import ApplyExecutor, IllegalTransition
from infralayer.orchestration.outputs import OutputResolver
from infralayer.orchestration.plan_builder import PlanBuilder, diff_properties
from infralayer.orchestration.results import (
    KNOWN_AFTER_APPLY,
    Action,
    DeploymentResult,
    ExecutionNode,
    NodeState,
    Plan,
    PlannedChange,
    PropertyChange,
)
from infralayer.orchestration.retry import RetryPolicy

__all__ = [
    "KNOWN_AFTER_APPLY",
    "Action",
    "ApplyExecutor",
    "DeploymentResult",
    "ExecutionNode",
    "IllegalTransition",
    "NodeState",
    "OutputResolver",
    "Plan",
    "PlanBuilder",
    "PlannedChange",
    "PropertyChange",
    "RetryPolicy",
    "diff_properties",
]
