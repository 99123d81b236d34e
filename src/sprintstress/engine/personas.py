"""SprintStress Persona Loop Engine — behavioral loops over the action library.

Every persona walks the same state machine::

    LoggingIn -> WaitingForGameStart -> (Deciding -> Acting -> Settling)* -> Finished

bounded by a wall-clock budget. Polling archetypes (spot, contract, loan)
read state, apply a pure decision rule and act once per iteration. Event-driven
archetypes (quiz, minority) spend their time blocked on an operator-triggered
mini-game and loop back to waiting once a settled round is dismissed.

The decision rules are plain functions so they can be exercised without a
browser; each persona takes an injectable ``random.Random``.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import math
import random
from typing import Literal

from sprintstress.config import StressConfig
from sprintstress.credentials import Credential
from sprintstress.engine.game_actions import OPTIONS, GameActions
from sprintstress.engine.protocols import CancelToken
from sprintstress.engine.state_parser import AssetSnapshot, Direction

logger = logging.getLogger("sprintstress.engine.personas")

MAX_SPOT_LOTS = 5
CANCEL_ALL_PROBABILITY = 0.2
MIN_LEVERAGE = 1
MAX_LEVERAGE = 5


class PersonaAbortedError(Exception):
    """A persona could not get past bootstrap (login or game start)."""

    def __init__(self, role: str, username: str, reason: str) -> None:
        self.role = role
        self.username = username
        self.reason = reason
        super().__init__(f"[{role}][{username}] {reason}")


class PersonaState(str, enum.Enum):
    LOGGING_IN = "LoggingIn"
    WAITING_FOR_GAME_START = "WaitingForGameStart"
    DECIDING = "Deciding"
    ACTING = "Acting"
    SETTLING = "Settling"
    FINISHED = "Finished"


@dataclasses.dataclass
class PersonaRunStats:
    """Counters owned by one persona loop."""

    iterations: int = 0
    successes: dict[str, int] = dataclasses.field(default_factory=dict)
    failures: dict[str, int] = dataclasses.field(default_factory=dict)
    anomalies: list[str] = dataclasses.field(default_factory=list)
    stop_reason: str = ""

    def record(self, action: str, ok: bool) -> bool:
        bucket = self.successes if ok else self.failures
        bucket[action] = bucket.get(action, 0) + 1
        return ok

    @property
    def total_successes(self) -> int:
        return sum(self.successes.values())

    @property
    def total_failures(self) -> int:
        return sum(self.failures.values())

    def summary(self) -> str:
        parts = [f"iterations={self.iterations}"]
        for action in sorted(set(self.successes) | set(self.failures)):
            parts.append(f"{action}={self.successes.get(action, 0)}/{self.failures.get(action, 0)}")
        return " ".join(parts)

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


# ---------------------------------------------------------------------------
# Decision rules
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class Decision:
    """What a persona intends to do this iteration."""

    kind: Literal["buy", "sell", "hold", "open", "cancel_all", "borrow", "repay", "idle"]
    lots: int = 0
    direction: Direction | None = None
    leverage: int = 0
    amount: float = 0.0


HOLD = Decision("hold")
IDLE = Decision("idle")


def decide_spot(snapshot: AssetSnapshot, price: float, rng: random.Random) -> Decision:
    """Buy 1-5 affordable lots while cash exceeds twice the price, else sell one.

    An unreadable price (0) always holds.
    """
    if price <= 0:
        return HOLD
    if snapshot.cash > 2 * price:
        affordable = math.floor(snapshot.cash / price)
        return Decision("buy", lots=rng.randint(1, min(MAX_SPOT_LOTS, affordable)))
    if snapshot.stock_count > 0:
        return Decision("sell", lots=1)
    return HOLD


def decide_contract(rng: random.Random) -> Decision:
    """Fixed Bernoulli policy: cancel everything 20% of the time, else open 1 lot."""
    if rng.random() < CANCEL_ALL_PROBABILITY:
        return Decision("cancel_all")
    direction: Direction = "LONG" if rng.random() < 0.5 else "SHORT"
    return Decision("open", lots=1, direction=direction, leverage=rng.randint(MIN_LEVERAGE, MAX_LEVERAGE))


def decide_loan(snapshot: AssetSnapshot, increment: float) -> Decision:
    if snapshot.debt == 0:
        return Decision("borrow", amount=increment)
    repayment = min(increment, snapshot.debt)
    if snapshot.debt > 0 and snapshot.cash >= repayment:
        return Decision("repay", amount=repayment)
    return IDLE


# ---------------------------------------------------------------------------
# Persona loops
# ---------------------------------------------------------------------------


class Persona:
    """Base loop. Subclasses implement ``iterate``."""

    role = ""

    def __init__(
        self,
        actions: GameActions,
        credential: Credential,
        config: StressConfig,
        cancel: CancelToken | None = None,
        rng: random.Random | None = None,
        duration: float | None = None,
    ) -> None:
        self.actions = actions
        self.credential = credential
        self.config = config
        self.rng = rng or random.Random()
        self.duration = config.duration_for(self.role) if duration is None else duration
        self.token = CancelToken.with_budget(self.duration, parent=cancel)
        self.stats = PersonaRunStats()
        self.state = PersonaState.LOGGING_IN

    @property
    def tag(self) -> str:
        return f"[{self.role}][{self.credential.username}]"

    def run(self) -> PersonaRunStats:
        """Drive the persona until its budget runs out.

        Raises:
            PersonaAbortedError: Login failed or the game never started.
        """
        user = self.credential.username
        logger.info("%s Start (budget %.0fs)", self.tag, self.duration)

        self.state = PersonaState.LOGGING_IN
        if not self.stats.record("login", self.actions.login(user, self.credential.password)):
            self.state = PersonaState.FINISHED
            raise PersonaAbortedError(self.role, user, "login failed")

        self.state = PersonaState.WAITING_FOR_GAME_START
        if not self.actions.wait_for_game_start(self.token):
            self.state = PersonaState.FINISHED
            raise PersonaAbortedError(self.role, user, "cancelled while waiting for game start")

        while not self.token.cancelled:
            day = self.actions.read_game_day()
            if day is not None and day >= self.config.test_end_day:
                logger.info("%s Reached day %d, stopping", self.tag, day)
                self.stats.stop_reason = f"day {day}"
                break

            self.state = PersonaState.DECIDING
            keep_going = self.iterate()
            self.stats.iterations += 1
            if not keep_going:
                break

            self.state = PersonaState.SETTLING
            self.token.sleep(self.config.settle_seconds)

        if not self.stats.stop_reason:
            self.stats.stop_reason = "budget"
        self.state = PersonaState.FINISHED
        logger.info("%s Finished: %s", self.tag, self.stats.summary())
        return self.stats

    def iterate(self) -> bool:
        """One Deciding -> Acting pass. Return False to end the loop."""
        raise NotImplementedError

    def _anomaly(self, message: str) -> None:
        logger.warning("%s %s", self.tag, message)
        self.stats.anomalies.append(message)


class SpotTrader(Persona):
    """User A: buys while cash-rich, otherwise sells one lot at a time."""

    role = "spot"

    def iterate(self) -> bool:
        before = self.actions.read_assets()
        if not self.stats.record("read_assets", before is not None):
            return True
        price = self.actions.get_current_stock_price()
        decision = decide_spot(before, price, self.rng)
        logger.info("%s Decide %s (cash=$%.2f price=$%.2f)", self.tag, decision.kind, before.cash, price)

        self.state = PersonaState.ACTING
        if decision.kind == "buy":
            if self.stats.record("buy_stock", self.actions.buy_stock(decision.lots)):
                self._verify(before, decision)
        elif decision.kind == "sell":
            if self.stats.record("sell_stock", self.actions.sell_stock(decision.lots)):
                self._verify(before, decision)
        return True

    def _verify(self, before: AssetSnapshot, decision: Decision) -> None:
        """Check the trade landed: cash moved the right way, holdings by exactly ``lots``."""
        if not self.token.sleep(self.config.settle_seconds):
            return
        after = self.actions.read_assets()
        if after is None:
            return
        delta = after.stock_count - before.stock_count
        if decision.kind == "buy":
            if not after.cash < before.cash:
                self._anomaly(f"Cash did not decrease after buying {decision.lots} lot(s)")
            if delta != decision.lots:
                self._anomaly(f"Holdings changed by {delta:g}, expected +{decision.lots}")
        else:
            if not after.cash > before.cash:
                self._anomaly(f"Cash did not increase after selling {decision.lots} lot(s)")
            if delta != -decision.lots:
                self._anomaly(f"Holdings changed by {delta:g}, expected -{decision.lots}")


class ContractTrader(Persona):
    """User B: opens random 1-lot positions, occasionally cancels all."""

    role = "contract"

    def iterate(self) -> bool:
        book = self.actions.read_contracts()
        self.stats.record("read_contracts", book is not None)
        decision = decide_contract(self.rng)
        held = len(book) if book is not None else "?"
        logger.info("%s Decide %s (open positions=%s)", self.tag, decision.kind, held)

        self.state = PersonaState.ACTING
        if decision.kind == "cancel_all":
            self.stats.record("cancel_all_contracts", self.actions.cancel_all_contracts())
        else:
            ok = self.actions.buy_contract(decision.direction, decision.leverage, decision.lots)
            self.stats.record("buy_contract", ok)
        return True


class LoanClient(Persona):
    """User C: borrows a fixed increment, repays when it can."""

    role = "loan"

    def iterate(self) -> bool:
        if self.stats.iterations == 0:
            self.stats.record("interact_with_loan_shark", self.actions.interact_with_loan_shark())
            self.actions.close_loan_shark()

        snapshot = self.actions.read_assets()
        if not self.stats.record("read_assets", snapshot is not None):
            return True
        decision = decide_loan(snapshot, self.config.loan_increment)
        logger.info("%s Decide %s (cash=$%.2f debt=$%.2f)", self.tag, decision.kind, snapshot.cash, snapshot.debt)

        self.state = PersonaState.ACTING
        if decision.kind == "borrow":
            self.stats.record("borrow", self.actions.handle_loan("BORROW", decision.amount))
        elif decision.kind == "repay":
            self.stats.record("repay", self.actions.handle_loan("REPAY", decision.amount))
        return True


class QuizPlayer(Persona):
    """User D: blocks until a quiz opens, answers at random, reports."""

    role = "quiz"

    def iterate(self) -> bool:
        if not self.actions.wait_for_quiz_start(self.token):
            return False

        self.state = PersonaState.ACTING
        option = self.rng.choice(OPTIONS)
        logger.info("%s Answer %s", self.tag, option)
        if self.stats.record("answer_quiz", self.actions.answer_quiz(option)):
            snapshot = self.actions.wait_quiz_result_and_report(cancel=self.token)
            self.stats.record("quiz_result", snapshot is not None)
        # The settled overlay stays up until the operator dismisses it
        return self.actions.wait_for_quiz_end(self.token)


class MinorityPlayer(Persona):
    """User E: bets on the minority game, borrowing once when short of cash."""

    role = "minority"

    def iterate(self) -> bool:
        if not self.actions.wait_for_minority_start(self.token):
            return False

        self.state = PersonaState.ACTING
        option = self.rng.choice(OPTIONS)
        amount = self.config.minority_bet
        logger.info("%s Bet %s $%s", self.tag, option, amount)
        ok = self.actions.bet_minority(option, amount)
        if not ok:
            logger.info("%s Bet refused, borrowing and retrying", self.tag)
            if self.stats.record("close_borrow_and_return", self.actions.close_borrow_and_return(amount)):
                ok = self.actions.bet_minority(option, amount)
        if self.stats.record("bet_minority", ok):
            snapshot = self.actions.wait_minority_result_and_report(cancel=self.token)
            self.stats.record("minority_result", snapshot is not None)
        return self.actions.wait_for_minority_end(self.token)


PERSONAS: dict[str, type[Persona]] = {
    cls.role: cls for cls in (SpotTrader, ContractTrader, LoanClient, QuizPlayer, MinorityPlayer)
}


def create_persona(role: str, actions: GameActions, credential: Credential, config: StressConfig, **kwargs) -> Persona:
    try:
        cls = PERSONAS[role]
    except KeyError:
        raise ValueError(f"Unknown persona role: {role}") from None
    return cls(actions, credential, config, **kwargs)
