"""SprintStress Sanity Checks — live round trips over the action library.

Each check drives a short action sequence against a logged-in session,
reads state before and after, and compares the deltas with what the
actions promised:

- asset_identity: total assets equal cash + stock value - debt
- buy_sell_symmetry: buying then selling N lots restores holdings and
  never leaves more cash than before (while the price holds still)
- contract_count: opening a position adds one card and margin; cancel-all
  leaves zero contracts and zero margin
- loan_round_trip: borrowing X moves cash and debt by X; repaying X
  restores both

Every broken expectation becomes a ``Finding``, the same record a full
run reports.
"""

from __future__ import annotations

import dataclasses
import logging

from sprintstress.config import StressConfig
from sprintstress.engine.game_actions import GameActions
from sprintstress.engine.protocols import CancelToken
from sprintstress.engine.report_generator import Finding
from sprintstress.engine.state_parser import AssetSnapshot, ContractBook
from sprintstress.models import ASSET_TOLERANCE

logger = logging.getLogger("sprintstress.engine.sanity")

CHECKS = ("asset_identity", "buy_sell_symmetry", "contract_count", "loan_round_trip")


class SanityCheckError(Exception):
    """An action or read inside a check failed, so the check cannot conclude."""


@dataclasses.dataclass
class CheckResult:
    """Outcome of one sanity check."""

    name: str
    passed: bool
    detail: str = ""
    findings: list[Finding] = dataclasses.field(default_factory=list)


class SanityChecker:
    """Runs the round-trip checks with one action library."""

    def __init__(
        self,
        actions: GameActions,
        config: StressConfig,
        persona: str = "-",
        cancel: CancelToken | None = None,
        lots: int = 1,
        loan_amount: float | None = None,
    ) -> None:
        self._actions = actions
        self._config = config
        self._persona = persona
        self._cancel = cancel or CancelToken()
        self._lots = lots
        self._loan_amount = config.loan_increment if loan_amount is None else loan_amount

    def run(self, names: list[str] | tuple[str, ...] | None = None) -> list[CheckResult]:
        """Run the named checks in order (all of them by default).

        Raises:
            ValueError: A name is not one of ``CHECKS``.
        """
        selected = list(names or CHECKS)
        unknown = [n for n in selected if n not in CHECKS]
        if unknown:
            raise ValueError(f"Unknown sanity check(s): {', '.join(unknown)}")

        results: list[CheckResult] = []
        for name in selected:
            if self._cancel.cancelled:
                logger.info("Sanity checks cancelled before %s", name)
                break
            results.append(self._run_one(name))
        return results

    def _run_one(self, name: str) -> CheckResult:
        logger.info("[%s] Check %s", self._persona, name)
        check = getattr(self, f"check_{name}")
        try:
            problems, detail = check()
        except SanityCheckError as exc:
            logger.warning("[%s] %s could not complete: %s", self._persona, name, exc)
            finding = Finding("medium", "action", f"{name}: {exc}", "", self._persona)
            return CheckResult(name, False, str(exc), [finding])

        findings = [Finding("high", "consistency", f"{name}: {p}", "", self._persona) for p in problems]
        for problem in problems:
            logger.warning("[%s] %s: %s", self._persona, name, problem)
        return CheckResult(name, not problems, "; ".join(problems) or detail, findings)

    # -- Steps ---------------------------------------------------------------

    def _assets(self, when: str) -> AssetSnapshot:
        snapshot = self._actions.read_assets()
        if snapshot is None:
            raise SanityCheckError(f"could not read assets {when}")
        return snapshot

    def _contracts(self, when: str) -> ContractBook:
        book = self._actions.read_contracts()
        if book is None:
            raise SanityCheckError(f"could not read contracts {when}")
        return book

    def _act(self, name: str, ok: bool) -> None:
        if not ok:
            raise SanityCheckError(f"{name} failed")
        self._cancel.sleep(self._config.settle_seconds)

    # -- Checks --------------------------------------------------------------

    def check_asset_identity(self) -> tuple[list[str], str]:
        snapshot = self._assets("for identity")
        problems = []
        if not snapshot.is_consistent():
            problems.append(
                f"total {snapshot.total_assets:.2f} != cash + stock value - debt {snapshot.computed_total:.2f}"
            )
        return problems, snapshot.describe()

    def check_buy_sell_symmetry(self) -> tuple[list[str], str]:
        lots = self._lots
        price_before = self._actions.get_current_stock_price()
        before = self._assets("before buying")

        self._act("buy_stock", self._actions.buy_stock(lots))
        bought = self._assets("after buying")
        problems = []
        if bought.stock_count - before.stock_count != lots:
            problems.append(f"holdings changed by {bought.stock_count - before.stock_count:g} on buy, expected +{lots}")
        if not bought.cash < before.cash:
            problems.append("cash did not decrease on buy")

        self._act("sell_stock", self._actions.sell_stock(lots))
        after = self._assets("after selling")
        if after.stock_count != before.stock_count:
            problems.append(f"holdings {after.stock_count:g} after round trip, expected {before.stock_count:g}")

        price_after = self._actions.get_current_stock_price()
        if price_after != price_before:
            detail = f"price moved {price_before:.2f} -> {price_after:.2f}; cash comparison skipped"
        else:
            detail = f"cash {before.cash:.2f} -> {after.cash:.2f}"
            if after.cash > before.cash + ASSET_TOLERANCE:
                problems.append(f"cash rose from {before.cash:.2f} to {after.cash:.2f} over a round trip")
        return problems, detail

    def check_contract_count(self) -> tuple[list[str], str]:
        before = self._contracts("before opening")

        self._act("buy_contract", self._actions.buy_contract("LONG", 1, 1))
        opened = self._contracts("after opening")
        problems = []
        if len(opened) != len(before) + 1:
            problems.append(f"{len(opened)} contract(s) after opening one, expected {len(before) + 1}")
        if not opened.margin > before.margin:
            problems.append("margin did not increase after opening")

        self._act("cancel_all_contracts", self._actions.cancel_all_contracts())
        after = self._contracts("after cancel-all")
        if len(after) != 0:
            problems.append(f"{len(after)} contract(s) left after cancel-all")
        if after.margin != 0:
            problems.append(f"margin {after.margin:.2f} left after cancel-all")
        return problems, f"{len(before)} -> {len(opened)} -> {len(after)} contract(s)"

    def check_loan_round_trip(self) -> tuple[list[str], str]:
        amount = self._loan_amount
        before = self._assets("before borrowing")

        self._act("borrow", self._actions.handle_loan("BORROW", amount))
        borrowed = self._assets("after borrowing")
        problems = []
        for label, delta in (("cash", borrowed.cash - before.cash), ("debt", borrowed.debt - before.debt)):
            if abs(delta - amount) > ASSET_TOLERANCE:
                problems.append(f"{label} changed by {delta:.2f} on borrow, expected +{amount:.2f}")

        self._act("repay", self._actions.handle_loan("REPAY", amount))
        after = self._assets("after repaying")
        if abs(after.debt - before.debt) > ASSET_TOLERANCE:
            problems.append(f"debt {after.debt:.2f} after round trip, expected {before.debt:.2f}")
        if abs(after.cash - before.cash) > ASSET_TOLERANCE:
            problems.append(f"cash {after.cash:.2f} after round trip, expected {before.cash:.2f}")
        return problems, f"debt {before.debt:.2f} -> {borrowed.debt:.2f} -> {after.debt:.2f}"


def findings_of(results: list[CheckResult]) -> list[Finding]:
    return [f for r in results for f in r.findings]
