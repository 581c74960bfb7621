"""Decision cycle -- wires the engine together and runs one cycle at a time.

Each cycle:
  1. DISCOVER: funding rates across exchanges -> arbitrage opportunities
  2. BALANCES: fetched once, frozen for the rest of the cycle
  3. EVALUATE: plan, target-APY bound, history and prediction per opportunity
  4. STICKINESS: decide which open pairs must be closed
  5. ALLOCATE: ladder the free (and freed) capital down the ranked list

The result is a CyclePlan handed to the external execution layer. After it
acts, the scheduler reports back through record_opened / record_closed /
record_failed so the open-time, cost and cool-down stores stay current.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from funding_arb.config import AppSettings
from funding_arb.exchange.balances import BalanceSnapshot
from funding_arb.exchange.provider import BalanceProvider, FundingDataProvider
from funding_arb.logging import cycle_context, get_logger
from funding_arb.market_data.aggregator import FundingRateAggregator
from funding_arb.models import ArbitrageOpportunity, OpenPositionPair, StickinessResult
from funding_arb.pnl.cost_calculator import CostCalculator
from funding_arb.pnl.loss_tracker import PositionLossTracker
from funding_arb.prediction.break_even import PredictedBreakEvenCalculator
from funding_arb.prediction.historical import RollingHistoricalMetrics
from funding_arb.prediction.sources import (
    EnsembleRatePredictor,
    HistoricalMetricsProvider,
    PredictionSource,
)
from funding_arb.strategy.evaluator import OpportunityEvaluator
from funding_arb.strategy.ladder import LadderAllocator
from funding_arb.strategy.models import (
    EvaluatedOpportunity,
    ExecutionPlan,
    LadderAllocationResult,
    PositionFilterResult,
    SelectedOpportunity,
)
from funding_arb.strategy.planner import ExecutionPlanBuilder
from funding_arb.strategy.stickiness import PositionStickinessManager
from funding_arb.strategy.tracking import OpportunityCooldowns, PositionOpenTimes
from funding_arb.symbols import normalize_symbol

logger = get_logger(__name__)

_ZERO = Decimal("0")


class CycleOutcome(str, Enum):
    """How a cycle ended.

    DATA_UNAVAILABLE (no funding rate, or neither rates nor balances, could
    be observed) is distinct from HELD (data was fine, nothing was worth
    deploying into).
    """

    ALLOCATED = "allocated"
    HELD = "held"
    NO_OPPORTUNITIES = "no_opportunities"
    DATA_UNAVAILABLE = "data_unavailable"


@dataclass
class CyclePlan:
    cycle_id: str
    outcome: CycleOutcome
    opportunities: list[ArbitrageOpportunity] = field(default_factory=list)
    evaluated: list[EvaluatedOpportunity] = field(default_factory=list)
    selected: SelectedOpportunity | None = None
    close_decisions: PositionFilterResult = field(default_factory=PositionFilterResult)
    allocation: LadderAllocationResult | None = None
    balances: BalanceSnapshot = field(default_factory=BalanceSnapshot)
    rates_observed: int = 0


class DecisionCycle:
    """Library facade over the decision engine.

    Args:
        settings: Application-wide settings.
        aggregator: Cross-exchange funding rate aggregator.
        balance_provider: Free-collateral source.
        planner: Execution plan sizing.
        evaluator: Scoring, ranking and rebalance decisions.
        stickiness: Open-pair hysteresis.
        ladder: Capital allocator.
        open_times: Scheduler-owned open timestamp store.
        cooldowns: Scheduler-owned failed-execution cool-downs.
        loss_tracker: Sunk-cost ledger for open pairs.
    """

    def __init__(
        self,
        settings: AppSettings,
        aggregator: FundingRateAggregator,
        balance_provider: BalanceProvider,
        planner: ExecutionPlanBuilder,
        evaluator: OpportunityEvaluator,
        stickiness: PositionStickinessManager,
        ladder: LadderAllocator,
        open_times: PositionOpenTimes,
        cooldowns: OpportunityCooldowns,
        loss_tracker: PositionLossTracker,
    ) -> None:
        self._settings = settings
        self._aggregator = aggregator
        self._balance_provider = balance_provider
        self._planner = planner
        self._evaluator = evaluator
        self._stickiness = stickiness
        self._ladder = ladder
        self._open_times = open_times
        self._cooldowns = cooldowns
        self._loss_tracker = loss_tracker
        self._cycle_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        providers: list[FundingDataProvider],
        balance_provider: BalanceProvider,
        predictor: EnsembleRatePredictor | None = None,
        history: HistoricalMetricsProvider | None = None,
        open_times: PositionOpenTimes | None = None,
        cooldowns: OpportunityCooldowns | None = None,
    ) -> "DecisionCycle":
        """Wire every component from settings.

        Without an explicit history provider, rates observed by the
        aggregator feed an in-process rolling window.
        """
        rolling = None
        if history is None:
            rolling = RollingHistoricalMetrics(
                window_size=settings.history.window_size,
                min_samples=settings.history.min_samples,
            )
            history = rolling

        costs = CostCalculator(settings.fees)
        aggregator = FundingRateAggregator(
            providers,
            settings.discovery,
            request_timeout=settings.exchange.request_timeout_seconds,
            history=rolling,
        )
        source = PredictionSource(
            predictor=predictor,
            history=history,
            default_confidence=settings.prediction.default_confidence,
            timeout=settings.prediction.timeout_seconds,
        )
        loss_tracker = PositionLossTracker()
        open_times = open_times if open_times is not None else PositionOpenTimes()
        evaluator = OpportunityEvaluator(
            source=source,
            loss_tracker=loss_tracker,
            aggregator=aggregator,
            strategy_settings=settings.strategy,
            prediction_settings=settings.prediction,
            break_even_calculator=PredictedBreakEvenCalculator(
                source, settings.prediction, settings.strategy
            ),
        )
        return cls(
            settings=settings,
            aggregator=aggregator,
            balance_provider=balance_provider,
            planner=ExecutionPlanBuilder(costs, settings.strategy),
            evaluator=evaluator,
            stickiness=PositionStickinessManager(
                aggregator, open_times, costs, settings.stickiness
            ),
            ladder=LadderAllocator(settings.strategy),
            open_times=open_times,
            cooldowns=(
                cooldowns
                if cooldowns is not None
                else OpportunityCooldowns(settings.strategy.filter_expiry_seconds)
            ),
            loss_tracker=loss_tracker,
        )

    @property
    def aggregator(self) -> FundingRateAggregator:
        return self._aggregator

    @property
    def loss_tracker(self) -> PositionLossTracker:
        return self._loss_tracker

    async def discover_opportunities(
        self, symbols: list[str], min_spread: Decimal | None = None
    ) -> list[ArbitrageOpportunity]:
        return await self._aggregator.find_arbitrage_opportunities(symbols, min_spread)

    async def evaluate(
        self, opportunity: ArbitrageOpportunity, plan: ExecutionPlan | None = None
    ) -> EvaluatedOpportunity:
        return await self._evaluator.evaluate(
            opportunity,
            plan,
            max_portfolio_usd=self._planner.max_portfolio_for_target_apy(opportunity),
        )

    def rank_and_select(
        self, evaluated: list[EvaluatedOpportunity]
    ) -> SelectedOpportunity | None:
        return self._evaluator.rank_and_select(evaluated)

    async def should_keep_position(
        self,
        symbol: str,
        long_exchange: str,
        short_exchange: str,
        best_alternative_spread: Decimal | None = None,
    ) -> StickinessResult:
        return await self._stickiness.should_keep_position(
            symbol, long_exchange, short_exchange, best_alternative_spread
        )

    def allocate(
        self,
        ranked: list[EvaluatedOpportunity],
        existing_positions: list[OpenPositionPair],
        total_capital: Decimal,
    ) -> LadderAllocationResult:
        return self._ladder.allocate(ranked, existing_positions, total_capital)

    async def run(
        self,
        symbols: list[str] | None = None,
        existing_positions: list[OpenPositionPair] | None = None,
        total_capital: Decimal | None = None,
    ) -> CyclePlan:
        """Run one full decision cycle.

        Args:
            symbols: Normalized symbols to scan; every discovered common
                asset when omitted.
            existing_positions: Open pairs read from exchange state.
            total_capital: Collateral to allocate; defaults to the sum of
                free balances plus collateral freed by closing pairs.
        """
        positions = list(existing_positions or [])
        async with self._cycle_lock:
            cycle_id = uuid.uuid4().hex[:12]
            with cycle_context(cycle_id):
                logger.info("decision_cycle_started", positions=len(positions))
                plan = await self._run_cycle(cycle_id, symbols, positions, total_capital)
                logger.info(
                    "decision_cycle_finished",
                    outcome=plan.outcome.value,
                    opportunities=len(plan.opportunities),
                    to_close=len(plan.close_decisions.to_close),
                    rungs=len(plan.allocation.selected) if plan.allocation else 0,
                )
                return plan

    async def _run_cycle(
        self,
        cycle_id: str,
        symbols: list[str] | None,
        positions: list[OpenPositionPair],
        total_capital: Decimal | None,
    ) -> CyclePlan:
        # Listings are refreshed every cycle; they also build the symbol mapping
        assets = await self._aggregator.discover_common_assets()
        if symbols is None:
            symbols = assets
        opportunities = await self.discover_opportunities(symbols)
        rates = self._aggregator.last_scan_rates
        unscanned = sorted({normalize_symbol(p.symbol) for p in positions} - set(rates))
        if unscanned:
            # Held pairs outside the scan still need their spread before deciding
            rates.update(await self._aggregator.fetch_rates(unscanned))
        rates_observed = sum(len(r) for r in rates.values())
        balances = await BalanceSnapshot.fetch(
            self._balance_provider,
            self._aggregator.exchanges,
            timeout=self._settings.exchange.request_timeout_seconds,
        )

        evaluated = []
        for opportunity in opportunities:
            plan = self._planner.build(opportunity, balances)
            evaluated.append(await self.evaluate(opportunity, plan))
        selected = self.rank_and_select(evaluated)

        best_alternative = max((o.spread for o in opportunities), default=None)
        close_decisions = await self._stickiness.filter_positions(
            positions, best_alternative, rates_by_symbol=rates
        )

        if total_capital is None:
            freed = sum(
                (p.current_collateral for p in close_decisions.to_close), _ZERO
            )
            total_capital = balances.total + freed

        ranked = self._ladder.filter_for_ladder(
            self._evaluator.filter_by_prediction_quality(evaluated),
            balances,
            self._cooldowns,
        )
        allocation = self.allocate(ranked, close_decisions.to_keep, total_capital)

        if allocation.selected:
            outcome = CycleOutcome.ALLOCATED
        elif (symbols and rates_observed == 0) or (
            not opportunities and balances.is_empty
        ):
            outcome = CycleOutcome.DATA_UNAVAILABLE
        elif not opportunities:
            outcome = CycleOutcome.NO_OPPORTUNITIES
        else:
            outcome = CycleOutcome.HELD

        return CyclePlan(
            cycle_id=cycle_id,
            outcome=outcome,
            opportunities=opportunities,
            evaluated=evaluated,
            selected=selected,
            close_decisions=close_decisions,
            allocation=allocation,
            balances=balances,
            rates_observed=rates_observed,
        )

    def record_opened(self, selection: SelectedOpportunity) -> None:
        """Start tracking a pair the execution layer has opened."""
        opp = selection.opportunity
        if selection.is_existing:
            # Top-ups keep the original open time and cost ledger
            return
        self._open_times.record_open(opp.symbol, opp.long_exchange, opp.short_exchange)
        if selection.plan is not None:
            self._loss_tracker.record_open(
                opp.symbol,
                opp.long_exchange,
                opp.short_exchange,
                selection.plan.entry_costs,
                selection.plan.exit_costs,
            )

    def record_closed(self, position: OpenPositionPair) -> None:
        """Stop tracking a pair once both legs are closed."""
        self._open_times.remove_open(
            position.symbol, position.long_exchange, position.short_exchange
        )
        self._loss_tracker.record_close(
            position.symbol, position.long_exchange, position.short_exchange
        )

    def record_failed(self, opportunity: ArbitrageOpportunity) -> None:
        """Cool down an exchange pair whose execution failed."""
        self._cooldowns.mark_failed(
            opportunity.symbol, opportunity.long_exchange, opportunity.short_exchange
        )
