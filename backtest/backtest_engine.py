"""
Backtest Engine - Oracolo di fitness per l'ottimizzatore DCA

Dato un vettore di parametri e una serie OHLCV, riproduce la strategia DCA
barra per barra e restituisce un PerformanceMetrics:

1. Costruisce una strategia nuova con solo le feature abilitate
2. Azzera lo stato interno e precalcola gli indicatori
3. Per ogni barra: decisione BUY/HOLD, commissioni, quantità minima,
   take profit del ciclo (modalità cycle, singolo o a livelli)
4. A fine dati valuta le posizioni aperte al prezzo finale e registra
   il ciclo ancora aperto come incompleto

Il run è puro e deterministico: stesso vettore + stessa serie => metriche
identiche, indipendentemente da ordine di valutazione e thread.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Set
import logging

import numpy as np
import pandas as pd

from backtest.fitness_evaluator import (
    CycleSummary, FitnessEvaluator, PerformanceMetrics, TradeRecord, empty_metrics,
)
from backtest.regime_tracker import RegimeTracker
from dca_optimizer.strategy_params import BaseConfig, StrategyParams
from strategy.dca_strategy import EnhancedDCAStrategy, TradeDecision
from strategy.factory import build_strategy
from strategy.indicators import Signal

_LOG = logging.getLogger(__name__)

MIN_BARS = 2


@dataclass
class _OpenTrade:
    entry_index: int
    entry_price: float
    quantity: float
    cost: float
    commission: float
    cycle: int
    remaining: float = 0.0
    sold_quantity: float = 0.0
    sold_value: float = 0.0     # lordo delle vendite
    proceeds: float = 0.0       # netto commissioni di vendita


@dataclass
class _RunState:
    balance: float
    position: float = 0.0
    cycle: int = 0
    cycle_start: int = -1
    levels_hit: Set[int] = field(default_factory=set)
    partial_exits: int = 0
    open_trades: List[_OpenTrade] = field(default_factory=list)
    trades: List[TradeRecord] = field(default_factory=list)
    cycles: List[CycleSummary] = field(default_factory=list)


class BacktestEngine:
    """
    Simulatore DCA su dati storici

    Args:
        base_config: Capitale, commissioni, quantità minima, modalità cycle
        regime_tracker: Tracker regimi opzionale (default da base_config.track_regimes)
    """

    def __init__(self, base_config: BaseConfig, regime_tracker: Optional[RegimeTracker] = None):
        self.base_config = base_config
        if regime_tracker is None and base_config.track_regimes:
            regime_tracker = RegimeTracker()
        self.regime_tracker = regime_tracker
        self.evaluator = FitnessEvaluator(base_config.initial_balance)

    def run(self, params: StrategyParams, price_data: pd.DataFrame) -> PerformanceMetrics:
        """
        Esegue il backtest completo

        Args:
            params: Vettore parametri (non viene modificato)
            price_data: DataFrame OHLCV condiviso in sola lettura

        Returns:
            PerformanceMetrics (zero trade/zero return se la serie è troppo corta)
        """
        cfg = self.base_config
        if price_data is None or len(price_data) < MIN_BARS:
            return empty_metrics(cfg.initial_balance)

        strategy = build_strategy(params, cfg)
        strategy.reset_state()
        strategy.prepare(price_data)

        closes = price_data["close"].to_numpy(dtype=float)
        timestamps = self._timestamps(price_data)
        n = len(closes)

        state = _RunState(balance=cfg.initial_balance)
        equity = np.empty(n, dtype=float)

        for i in range(n):
            price = closes[i]
            decision = strategy.decide(i, price)
            if decision.action is Signal.BUY:
                self._execute_buy(state, strategy, decision, i, price)

            if cfg.cycle and state.open_trades:
                if cfg.use_tp_levels:
                    self._check_tp_levels(state, strategy, params, i, price, timestamps)
                else:
                    self._check_take_profit(state, strategy, params, i, price, timestamps)

            equity[i] = state.balance + state.position * price

        self._close_open_cycle(state, n - 1, closes[-1], timestamps)

        regime_stats = None
        if self.regime_tracker is not None:
            regime_stats = self.regime_tracker.analyze(price_data, equity, state.trades)

        metrics = self.evaluator.evaluate(state.trades, equity, timestamps, state.cycles, regime_stats)
        _LOG.debug(f"📊 Backtest {params!r}: return={metrics.total_return:.4f}, "
                   f"trades={metrics.total_trades}, cycles={metrics.completed_cycles}")
        return metrics

    @staticmethod
    def _timestamps(price_data: pd.DataFrame) -> np.ndarray:
        stamps = pd.to_datetime(price_data["timestamp"], utc=True)
        return stamps.dt.tz_localize(None).to_numpy()

    @staticmethod
    def _label(timestamps: np.ndarray, i: int) -> str:
        return pd.Timestamp(timestamps[i]).isoformat()

    def _execute_buy(self, state: _RunState, strategy: EnhancedDCAStrategy,
                     decision: TradeDecision, i: int, price: float) -> None:
        cfg = self.base_config
        if price <= 0 or decision.amount <= 0:
            return

        quantity = decision.amount / price
        if cfg.min_order_qty > 0:
            # multiplo della quantità minima, almeno uno step
            steps = max(1, int(quantity / cfg.min_order_qty + 0.5))
            quantity = steps * cfg.min_order_qty

        cost = quantity * price
        commission = cost * cfg.commission
        if state.balance < cost + commission:
            return

        if not state.open_trades:
            state.cycle_start = i
        state.balance -= cost + commission
        state.position += quantity
        state.open_trades.append(
            _OpenTrade(i, price, quantity, cost, commission, state.cycle, remaining=quantity)
        )
        strategy.on_entry(i, price)

    def _check_take_profit(self, state: _RunState, strategy: EnhancedDCAStrategy,
                           params: StrategyParams, i: int, price: float,
                           timestamps: np.ndarray) -> None:
        """TP singolo: vende l'intera posizione e chiude il ciclo"""
        avg_entry = self._avg_entry(state)
        tp = strategy.take_profit_percent(i, price, params.tp_percent)
        if price < avg_entry * (1 + tp):
            return

        self._sell(state, state.position, price)
        self._close_cycle(state, strategy, i, price, timestamps)

    def _check_tp_levels(self, state: _RunState, strategy: EnhancedDCAStrategy,
                         params: StrategyParams, i: int, price: float,
                         timestamps: np.ndarray) -> None:
        """
        TP a livelli: il livello k scatta a avg_entry * (1 + tp * k / N)
        e vende 1/N della quantità acquistata nel ciclo (limitata al residuo).
        L'ultimo livello vende tutto il residuo e chiude il ciclo.
        """
        levels = self.base_config.tp_levels
        avg_entry = self._avg_entry(state)
        tp = strategy.take_profit_percent(i, price, params.tp_percent)
        cycle_quantity = sum(t.quantity for t in state.open_trades)

        for level in range(1, levels + 1):
            if level in state.levels_hit:
                continue
            if price < avg_entry * (1 + tp * level / levels):
                break
            state.levels_hit.add(level)
            if len(state.levels_hit) == levels:
                quantity = state.position
            else:
                quantity = min(cycle_quantity / levels, state.position)
            if quantity > 0:
                self._sell(state, quantity, price)
                state.partial_exits += 1
            _LOG.debug(f"🎯 TP level {level}/{levels} @ {price:.4f} (cycle {state.cycle})")

        if len(state.levels_hit) == levels:
            self._close_cycle(state, strategy, i, price, timestamps)

    @staticmethod
    def _avg_entry(state: _RunState) -> float:
        """Prezzo medio di carico del ciclo (quantità acquistate, non residue)"""
        return sum(t.cost for t in state.open_trades) / sum(t.quantity for t in state.open_trades)

    def _sell(self, state: _RunState, quantity: float, price: float) -> None:
        """Vende quantity ripartendo pro-rata sui trade aperti del ciclo"""
        position = state.position
        full_exit = quantity >= position
        if full_exit:
            quantity = position

        gross = quantity * price
        net = gross - gross * self.base_config.commission
        state.balance += net

        for trade in state.open_trades:
            share = trade.remaining / position if position > 0 else 0.0
            sold = trade.remaining if full_exit else quantity * share
            trade.remaining = 0.0 if full_exit else trade.remaining - sold
            trade.sold_quantity += sold
            trade.sold_value += sold * price
            trade.proceeds += net * share

        state.position = 0.0 if full_exit else position - quantity

    def _close_cycle(self, state: _RunState, strategy: EnhancedDCAStrategy, i: int,
                     price: float, timestamps: np.ndarray) -> None:
        exit_time = self._label(timestamps, i)
        cycle_pnl = 0.0
        for trade in state.open_trades:
            pnl = trade.proceeds - trade.cost - trade.commission
            exit_price = trade.sold_value / trade.sold_quantity if trade.sold_quantity > 0 else price
            cycle_pnl += pnl
            state.trades.append(self._record(trade, i, exit_time, exit_price, pnl, "closed", timestamps))

        state.cycles.append(self._summary(state, i, price, cycle_pnl, completed=True))

        state.position = 0.0
        state.open_trades = []
        state.levels_hit = set()
        state.partial_exits = 0
        state.cycle += 1
        strategy.on_cycle_complete()

    def _close_open_cycle(self, state: _RunState, last_index: int, final_price: float,
                          timestamps: np.ndarray) -> None:
        """
        Fine dati: i trade aperti sono valutati al prezzo finale (P&L non
        realizzato + eventuali uscite parziali già incassate); in modalità
        cycle il ciclo aperto viene registrato come incompleto.
        """
        if not state.open_trades:
            return

        exit_time = self._label(timestamps, last_index)
        cycle_pnl = 0.0
        for trade in state.open_trades:
            pnl = trade.proceeds + trade.remaining * final_price - trade.cost - trade.commission
            cycle_pnl += pnl
            state.trades.append(self._record(trade, last_index, exit_time, final_price, pnl, "open", timestamps))

        if self.base_config.cycle:
            state.cycles.append(self._summary(state, last_index, final_price, cycle_pnl, completed=False))

    def _summary(self, state: _RunState, end_index: int, exit_price: float,
                 pnl: float, completed: bool) -> CycleSummary:
        return CycleSummary(
            cycle=state.cycle,
            start_index=state.cycle_start,
            end_index=end_index,
            entries=len(state.open_trades),
            avg_entry_price=self._avg_entry(state),
            exit_price=exit_price,
            quantity=sum(t.quantity for t in state.open_trades),
            pnl=pnl,
            completed=completed,
            levels_hit=len(state.levels_hit),
            partial_exits=state.partial_exits,
        )

    def _record(self, trade: _OpenTrade, exit_index: int, exit_time: str, exit_price: float,
                pnl: float, status: str, timestamps: np.ndarray) -> TradeRecord:
        invested = trade.cost + trade.commission
        return TradeRecord(
            entry_index=trade.entry_index,
            entry_time=self._label(timestamps, trade.entry_index),
            entry_price=trade.entry_price,
            quantity=trade.quantity,
            cost=trade.cost,
            commission=trade.commission,
            exit_index=exit_index,
            exit_time=exit_time,
            exit_price=exit_price,
            pnl=pnl,
            pnl_pct=pnl / invested if invested > 0 else 0.0,
            status=status,
            cycle=trade.cycle,
        )


def run_backtest(params: StrategyParams, price_data: pd.DataFrame,
                 base_config: Optional[BaseConfig] = None) -> PerformanceMetrics:
    """Backtest singolo con un engine nuovo"""
    return BacktestEngine(base_config or BaseConfig()).run(params, price_data)
