"""Strategy layer -- evaluation, stickiness, sizing and ladder allocation."""

from funding_arb.strategy.evaluator import OpportunityEvaluator
from funding_arb.strategy.ladder import LadderAllocator
from funding_arb.strategy.planner import ExecutionPlanBuilder
from funding_arb.strategy.stickiness import PositionStickinessManager
from funding_arb.strategy.tracking import OpportunityCooldowns, PositionOpenTimes

__all__ = [
    "ExecutionPlanBuilder",
    "LadderAllocator",
    "OpportunityCooldowns",
    "OpportunityEvaluator",
    "PositionOpenTimes",
    "PositionStickinessManager",
]
