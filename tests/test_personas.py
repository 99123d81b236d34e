"""Unit tests for sprintstress.engine.personas — decision rules and persona loops."""

from __future__ import annotations

import random
from pathlib import Path

import pytest

from sprintstress.config import StressConfig
from sprintstress.credentials import Credential
from sprintstress.engine.personas import (
    HOLD,
    IDLE,
    PERSONAS,
    ContractTrader,
    LoanClient,
    MinorityPlayer,
    PersonaAbortedError,
    PersonaRunStats,
    PersonaState,
    QuizPlayer,
    SpotTrader,
    create_persona,
    decide_contract,
    decide_loan,
    decide_spot,
)
from sprintstress.engine.protocols import CancelToken
from sprintstress.engine.state_parser import EMPTY_BOOK, AssetSnapshot

from conftest import ScriptedRandom


def _assets(cash: float = 1000, stock_count: float = 0, debt: float = 0, price: float = 100) -> AssetSnapshot:
    stock_value = stock_count * price
    return AssetSnapshot(
        total_assets=cash + stock_value - debt,
        cash=cash,
        stock_value=stock_value,
        stock_count=stock_count,
        debt=debt,
    )


class FakeActions:
    """Scripted stand-in for GameActions that records every call."""

    def __init__(self) -> None:
        self.persona = "fake"
        self.login_ok = True
        self.start_ok = True
        self.days: list[int | None] = [1]
        self.assets: list[AssetSnapshot | None] = [_assets()]
        self.price = 100.0
        self.trade_ok = True
        self.quiz_starts: list[bool] = [False]
        self.minority_starts: list[bool] = [False]
        self.bets: list[bool] = [True]
        self.borrow_return_ok = True
        self.round_ends: list[bool] = [True]
        self.calls: list[tuple] = []

    @staticmethod
    def _next(script: list):
        return script.pop(0) if len(script) > 1 else script[0]

    def _call(self, name: str, *args):
        self.calls.append((name, *args))

    def called(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    def login(self, user, password):
        self._call("login", user, password)
        return self.login_ok

    def wait_for_game_start(self, cancel=None):
        self._call("wait_for_game_start")
        return self.start_ok

    def read_game_day(self):
        return self._next(self.days)

    def read_assets(self):
        self._call("read_assets")
        return self._next(self.assets)

    def get_current_stock_price(self):
        return self.price

    def buy_stock(self, lots):
        self._call("buy_stock", lots)
        return self.trade_ok

    def sell_stock(self, lots):
        self._call("sell_stock", lots)
        return self.trade_ok

    def read_contracts(self):
        self._call("read_contracts")
        return EMPTY_BOOK

    def buy_contract(self, direction, leverage, lots):
        self._call("buy_contract", direction, leverage, lots)
        return self.trade_ok

    def cancel_all_contracts(self):
        self._call("cancel_all_contracts")
        return True

    def interact_with_loan_shark(self):
        self._call("interact_with_loan_shark")
        return True

    def close_loan_shark(self):
        self._call("close_loan_shark")
        return True

    def handle_loan(self, action, amount):
        self._call("handle_loan", action, amount)
        return True

    def wait_for_quiz_start(self, cancel=None):
        self._call("wait_for_quiz_start")
        return self._next(self.quiz_starts)

    def answer_quiz(self, option):
        self._call("answer_quiz", option)
        return True

    def wait_quiz_result_and_report(self, timeout_ms=None, cancel=None):
        self._call("wait_quiz_result_and_report")
        return _assets()

    def wait_for_quiz_end(self, cancel=None):
        self._call("wait_for_quiz_end")
        return self._next(self.round_ends)

    def wait_for_minority_start(self, cancel=None):
        self._call("wait_for_minority_start")
        return self._next(self.minority_starts)

    def bet_minority(self, option, amount):
        self._call("bet_minority", option, amount)
        return self._next(self.bets)

    def close_borrow_and_return(self, amount):
        self._call("close_borrow_and_return", amount)
        return self.borrow_return_ok

    def wait_minority_result_and_report(self, timeout_ms=None, cancel=None):
        self._call("wait_minority_result_and_report")
        return _assets()

    def wait_for_minority_end(self, cancel=None):
        self._call("wait_for_minority_end")
        return self._next(self.round_ends)


@pytest.fixture
def fake_actions() -> FakeActions:
    return FakeActions()


@pytest.fixture
def credential() -> Credential:
    return Credential(username="alice01", password="Test1234")


def _persona(cls, actions, credential, config, **kwargs):
    kwargs.setdefault("duration", 60)
    return cls(actions, credential, config, **kwargs)


# ---------------------------------------------------------------------------
# 1. Spot decision rule
# ---------------------------------------------------------------------------

class TestDecideSpot:
    def test_cash_rich_buys_scripted_lot_count(self):
        decision = decide_spot(_assets(cash=1000), 100, ScriptedRandom(ints=[3]))
        assert decision.kind == "buy"
        assert decision.lots == 3

    @pytest.mark.parametrize("seed", range(20))
    def test_buy_lots_bounded_by_cap(self, seed):
        decision = decide_spot(_assets(cash=1000), 100, random.Random(seed))
        assert 1 <= decision.lots <= 5

    @pytest.mark.parametrize("seed", range(20))
    def test_buy_lots_bounded_by_affordability(self, seed):
        decision = decide_spot(_assets(cash=250), 100, random.Random(seed))
        assert decision.kind == "buy"
        assert 1 <= decision.lots <= 2

    def test_cash_at_exactly_twice_price_sells(self):
        decision = decide_spot(_assets(cash=200, stock_count=4), 100, random.Random(0))
        assert decision.kind == "sell"
        assert decision.lots == 1

    def test_nothing_to_sell_holds(self):
        assert decide_spot(_assets(cash=50), 100, random.Random(0)) == HOLD

    def test_unknown_price_never_buys(self):
        assert decide_spot(_assets(cash=1000), 0, random.Random(0)) == HOLD

    def test_unknown_price_never_sells_holdings(self):
        snapshot = AssetSnapshot(total_assets=1300, cash=1000, stock_value=300, stock_count=3, debt=0)
        assert decide_spot(snapshot, 0.0, random.Random(0)) == HOLD

    def test_unreadable_price_trades_nothing(self, fake_actions, credential, fast_config):
        fast_config.test_end_day = 10
        fake_actions.price = 0.0
        fake_actions.assets = [_assets(cash=1000, stock_count=3)]
        fake_actions.days = [1, 1, 10]
        _persona(SpotTrader, fake_actions, credential, fast_config).run()
        assert fake_actions.called("buy_stock") == []
        assert fake_actions.called("sell_stock") == []


# ---------------------------------------------------------------------------
# 2. Contract decision rule
# ---------------------------------------------------------------------------

class TestDecideContract:
    def test_low_draw_cancels_all(self):
        assert decide_contract(ScriptedRandom(randoms=[0.15])).kind == "cancel_all"

    def test_open_long(self):
        decision = decide_contract(ScriptedRandom(randoms=[0.5, 0.3], ints=[4]))
        assert decision.kind == "open"
        assert decision.direction == "LONG"
        assert decision.leverage == 4
        assert decision.lots == 1

    def test_open_short(self):
        decision = decide_contract(ScriptedRandom(randoms=[0.2, 0.7], ints=[1]))
        assert decision.kind == "open"
        assert decision.direction == "SHORT"

    def test_cancel_ratio_near_one_in_five(self):
        rng = random.Random(42)
        draws = [decide_contract(rng).kind for _ in range(10_000)]
        ratio = draws.count("cancel_all") / len(draws)
        assert 0.18 < ratio < 0.22

    def test_leverage_range(self):
        rng = random.Random(7)
        leverages = {decide_contract(rng).leverage for _ in range(2_000)} - {0}
        assert leverages == {1, 2, 3, 4, 5}


# ---------------------------------------------------------------------------
# 3. Loan decision rule
# ---------------------------------------------------------------------------

class TestDecideLoan:
    def test_debt_free_borrows_increment(self):
        decision = decide_loan(_assets(debt=0), 300)
        assert decision.kind == "borrow"
        assert decision.amount == 300

    def test_repays_increment_when_affordable(self):
        decision = decide_loan(_assets(cash=400, debt=500), 300)
        assert decision.kind == "repay"
        assert decision.amount == 300

    def test_repayment_capped_at_debt(self):
        decision = decide_loan(_assets(cash=400, debt=120), 300)
        assert decision.kind == "repay"
        assert decision.amount == 120

    def test_idle_when_cash_short(self):
        assert decide_loan(_assets(cash=50, debt=100), 300) == IDLE


# ---------------------------------------------------------------------------
# 4. Loop lifecycle
# ---------------------------------------------------------------------------

class TestPersonaLifecycle:
    def test_login_failure_aborts(self, fake_actions, credential, fast_config):
        fake_actions.login_ok = False
        persona = _persona(SpotTrader, fake_actions, credential, fast_config)
        with pytest.raises(PersonaAbortedError) as exc_info:
            persona.run()
        assert exc_info.value.role == "spot"
        assert exc_info.value.username == "alice01"
        assert persona.state == PersonaState.FINISHED
        assert persona.stats.failures == {"login": 1}
        assert fake_actions.called("wait_for_game_start") == []

    def test_game_start_failure_aborts(self, fake_actions, credential, fast_config):
        fake_actions.start_ok = False
        persona = _persona(ContractTrader, fake_actions, credential, fast_config)
        with pytest.raises(PersonaAbortedError, match="game start"):
            persona.run()

    def test_stops_at_test_end_day(self, fake_actions, credential, fast_config):
        fast_config.test_end_day = 10
        fake_actions.days = [1, 1, 1, 10]
        fake_actions.assets = [_assets(cash=50)]
        stats = _persona(SpotTrader, fake_actions, credential, fast_config).run()
        assert stats.iterations == 3
        assert stats.stop_reason == "day 10"

    def test_exhausted_budget_runs_no_iterations(self, fake_actions, credential, fast_config):
        stats = _persona(SpotTrader, fake_actions, credential, fast_config, duration=0).run()
        assert stats.iterations == 0
        assert stats.stop_reason == "budget"
        assert fake_actions.called("read_assets") == []

    def test_parent_cancel_stops_loop(self, fake_actions, credential, fast_config):
        parent = CancelToken()
        parent.cancel()
        persona = _persona(ContractTrader, fake_actions, credential, fast_config, cancel=parent)
        assert persona.run().iterations == 0

    def test_duration_defaults_to_role_budget(self, fake_actions, credential, fast_config):
        fast_config.role_durations["quiz"] = 42
        persona = QuizPlayer(fake_actions, credential, fast_config)
        assert persona.duration == 42


# ---------------------------------------------------------------------------
# 5. Archetypes
# ---------------------------------------------------------------------------

class TestSpotTrader:
    def test_buy_verified_without_anomaly(self, fake_actions, credential, fast_config):
        fake_actions.days = [1, 10]
        fake_actions.assets = [_assets(cash=1000), _assets(cash=700, stock_count=3)]
        persona = _persona(SpotTrader, fake_actions, credential, fast_config, rng=ScriptedRandom(ints=[3]))
        stats = persona.run()
        assert fake_actions.called("buy_stock") == [("buy_stock", 3)]
        assert stats.successes["buy_stock"] == 1
        assert stats.anomalies == []

    def test_unchanged_state_after_buy_is_anomaly(self, fake_actions, credential, fast_config):
        fake_actions.days = [1, 10]
        fake_actions.assets = [_assets(cash=1000)]
        persona = _persona(SpotTrader, fake_actions, credential, fast_config, rng=ScriptedRandom(ints=[2]))
        stats = persona.run()
        assert len(stats.anomalies) == 2
        assert "Cash did not decrease" in stats.anomalies[0]
        assert "expected +2" in stats.anomalies[1]

    def test_sell_when_cash_poor(self, fake_actions, credential, fast_config):
        fake_actions.days = [1, 10]
        fake_actions.assets = [_assets(cash=100, stock_count=2), _assets(cash=200, stock_count=1)]
        stats = _persona(SpotTrader, fake_actions, credential, fast_config).run()
        assert fake_actions.called("sell_stock") == [("sell_stock", 1)]
        assert stats.anomalies == []

    def test_failed_trade_is_counted_not_verified(self, fake_actions, credential, fast_config):
        fake_actions.days = [1, 10]
        fake_actions.trade_ok = False
        persona = _persona(SpotTrader, fake_actions, credential, fast_config, rng=ScriptedRandom(ints=[1]))
        stats = persona.run()
        assert stats.failures["buy_stock"] == 1
        assert len(fake_actions.called("read_assets")) == 1

    def test_unreadable_assets_skip_iteration(self, fake_actions, credential, fast_config):
        fake_actions.days = [1, 10]
        fake_actions.assets = [None]
        stats = _persona(SpotTrader, fake_actions, credential, fast_config).run()
        assert stats.failures["read_assets"] == 1
        assert fake_actions.called("buy_stock") == []


class TestContractTrader:
    def test_cancel_all_branch(self, fake_actions, credential, fast_config):
        fake_actions.days = [1, 10]
        persona = _persona(ContractTrader, fake_actions, credential, fast_config, rng=ScriptedRandom(randoms=[0.1]))
        persona.run()
        assert len(fake_actions.called("cancel_all_contracts")) == 1
        assert fake_actions.called("buy_contract") == []

    def test_open_branch(self, fake_actions, credential, fast_config):
        fake_actions.days = [1, 10]
        rng = ScriptedRandom(randoms=[0.9, 0.9], ints=[5])
        stats = _persona(ContractTrader, fake_actions, credential, fast_config, rng=rng).run()
        assert fake_actions.called("buy_contract") == [("buy_contract", "SHORT", 5, 1)]
        assert stats.successes["buy_contract"] == 1


class TestLoanClient:
    def test_first_iteration_talks_to_merchant_then_borrows(self, fake_actions, credential, fast_config):
        fake_actions.days = [1, 1, 10]
        fake_actions.assets = [_assets(debt=0), _assets(cash=1300, debt=300)]
        _persona(LoanClient, fake_actions, credential, fast_config).run()
        assert len(fake_actions.called("interact_with_loan_shark")) == 1
        assert fake_actions.called("handle_loan") == [
            ("handle_loan", "BORROW", 300),
            ("handle_loan", "REPAY", 300),
        ]


class TestQuizPlayer:
    def test_answers_each_round_until_wait_ends(self, fake_actions, credential, fast_config):
        fake_actions.quiz_starts = [True, False]
        stats = _persona(QuizPlayer, fake_actions, credential, fast_config, rng=ScriptedRandom()).run()
        assert fake_actions.called("answer_quiz") == [("answer_quiz", "A")]
        assert stats.successes["quiz_result"] == 1
        assert stats.iterations == 2

    def test_waits_for_round_to_clear_before_next_round(self, fake_actions, credential, fast_config):
        fake_actions.quiz_starts = [True, True, False]
        _persona(QuizPlayer, fake_actions, credential, fast_config, rng=ScriptedRandom()).run()
        order = [c[0] for c in fake_actions.calls if c[0].startswith("wait_")]
        assert order == [
            "wait_for_game_start",
            "wait_for_quiz_start",
            "wait_quiz_result_and_report",
            "wait_for_quiz_end",
            "wait_for_quiz_start",
            "wait_quiz_result_and_report",
            "wait_for_quiz_end",
            "wait_for_quiz_start",
        ]

    def test_round_that_never_clears_ends_the_loop(self, fake_actions, credential, fast_config):
        fake_actions.quiz_starts = [True]
        fake_actions.round_ends = [False]
        stats = _persona(QuizPlayer, fake_actions, credential, fast_config, rng=ScriptedRandom()).run()
        assert stats.iterations == 1
        assert len(fake_actions.called("answer_quiz")) == 1

    def test_failed_answer_still_waits_for_round_end(self, fake_actions, credential, fast_config, monkeypatch):
        fake_actions.quiz_starts = [True, False]
        monkeypatch.setattr(fake_actions, "answer_quiz", lambda option: False)
        stats = _persona(QuizPlayer, fake_actions, credential, fast_config, rng=ScriptedRandom()).run()
        assert stats.failures["answer_quiz"] == 1
        assert fake_actions.called("wait_quiz_result_and_report") == []
        assert len(fake_actions.called("wait_for_quiz_end")) == 1


class TestMinorityPlayer:
    def test_refused_bet_borrows_and_retries_once(self, fake_actions, credential, fast_config):
        fake_actions.minority_starts = [True, False]
        fake_actions.bets = [False, True]
        stats = _persona(MinorityPlayer, fake_actions, credential, fast_config, rng=ScriptedRandom()).run()
        assert fake_actions.called("close_borrow_and_return") == [("close_borrow_and_return", 100)]
        assert fake_actions.called("bet_minority") == [("bet_minority", "A", 100), ("bet_minority", "A", 100)]
        assert stats.successes["bet_minority"] == 1
        assert stats.successes["minority_result"] == 1

    def test_failed_borrow_skips_retry(self, fake_actions, credential, fast_config):
        fake_actions.minority_starts = [True, False]
        fake_actions.bets = [False]
        fake_actions.borrow_return_ok = False
        stats = _persona(MinorityPlayer, fake_actions, credential, fast_config, rng=ScriptedRandom()).run()
        assert len(fake_actions.called("bet_minority")) == 1
        assert stats.failures["bet_minority"] == 1
        assert fake_actions.called("wait_minority_result_and_report") == []
        assert len(fake_actions.called("wait_for_minority_end")) == 1

    def test_settled_round_is_not_bet_twice(self, fake_actions, credential, fast_config):
        fake_actions.minority_starts = [True]
        fake_actions.round_ends = [False]
        stats = _persona(MinorityPlayer, fake_actions, credential, fast_config, rng=ScriptedRandom()).run()
        assert len(fake_actions.called("bet_minority")) == 1
        assert stats.iterations == 1


# ---------------------------------------------------------------------------
# 6. Registry and stats
# ---------------------------------------------------------------------------

class TestRegistry:
    def test_every_role_has_a_persona(self):
        assert set(PERSONAS) == {"spot", "contract", "loan", "quiz", "minority"}

    def test_create_persona(self, fake_actions, credential, fast_config):
        persona = create_persona("loan", fake_actions, credential, fast_config, duration=5)
        assert isinstance(persona, LoanClient)
        assert persona.duration == 5

    def test_unknown_role_raises(self, fake_actions, credential, fast_config):
        with pytest.raises(ValueError, match="Unknown persona role"):
            create_persona("whale", fake_actions, credential, fast_config)


class TestPersonaRunStats:
    def test_record_and_summary(self):
        stats = PersonaRunStats(iterations=2)
        assert stats.record("buy_stock", True) is True
        assert stats.record("buy_stock", False) is False
        stats.record("read_assets", True)
        assert stats.total_successes == 2
        assert stats.total_failures == 1
        assert stats.summary() == "iterations=2 buy_stock=1/1 read_assets=1/0"

    def test_to_dict_is_json_friendly(self):
        stats = PersonaRunStats(stop_reason="budget")
        stats.anomalies.append("x")
        assert stats.to_dict()["anomalies"] == ["x"]
        assert stats.to_dict()["stop_reason"] == "budget"
