"""SprintStress Game Actions — the atomic building blocks of every persona.

Each public method is one bounded UI protocol against the game:

1. validate inputs locally and fail fast without touching the page,
2. drive the page through locate -> wait -> interact, skipping switches that
   are already in the target state,
3. confirm through an application-level acknowledgment (toast, dialog
   dismissal, anchor change) rather than trusting the click,
4. return ``True``/``False`` or a typed snapshot (``None`` on failure).

No exception leaves an action. Unexpected errors are logged, a best-effort
screenshot is written to the evidence directory, and the action reports
failure; the persona's next iteration is the retry boundary.
"""

from __future__ import annotations

import logging
import math
import time
from pathlib import Path
from typing import Callable, Literal

from sprintstress.credentials import Credential, CredentialStore
from sprintstress.engine import probe as ui
from sprintstress.engine.protocols import CancelToken, StateProbe, UIControl
from sprintstress.engine.state_parser import (
    EMPTY_BOOK,
    AssetSnapshot,
    ContractBook,
    Direction,
    parse_contract_card,
    parse_correct_answer,
    parse_currency,
    parse_game_day,
)
from sprintstress.models import DEFAULT_ACTION_TIMEOUT_MS, DEFAULT_NAVIGATION_TIMEOUT_MS

logger = logging.getLogger("sprintstress.engine.game_actions")

LoanAction = Literal["BORROW", "REPAY"]
Option = Literal["A", "B", "C", "D"]

OPTIONS = ("A", "B", "C", "D")
MAX_AVATAR_INDEX = 50

# Bounded waits (ms)
DIALOG_TIMEOUT_MS = 5_000
TOAST_TIMEOUT_MS = 5_000
ASSET_ANCHOR_TIMEOUT_MS = 5_000
SWITCH_SETTLE_MS = 300
GAME_CLOCK_SAMPLE_MS = 2_000
CANCEL_SETTLE_MS = 3_000
QUIZ_COUNTDOWN_TIMEOUT_MS = 10_000
ANSWER_OPTIONS_TIMEOUT_MS = 15_000
# Settlement is triggered by an operator on the admin console
RESULT_TIMEOUT_MS = 300_000
BLOCKING_SLICE_MS = 1_000

# React ignores a plain ``el.value = x``; go through the native setter and
# fire the events its synthetic handlers listen to.
_SET_REACT_VALUE_JS = """
(el, value) => {
    const proto = Object.getPrototypeOf(el);
    const descriptor = Object.getOwnPropertyDescriptor(proto, 'value');
    descriptor.set.call(el, value);
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    el.dispatchEvent(new Event('blur', { bubbles: true }));
}
"""


class ActionError(Exception):
    """Raised inside an action when an acknowledgment never arrives."""


def _is_positive_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _is_positive_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value) and value > 0


def _fmt(value: float) -> str:
    """Render 300.0 as "300" and 2.5 as "2.5", never in exponent form."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:f}".rstrip("0")


class GameActions:
    """The action library, bound to one browser session."""

    def __init__(
        self,
        probe: StateProbe,
        persona: str,
        evidence_dir: Path | None = None,
        credential_store: CredentialStore | None = None,
        cancel: CancelToken | None = None,
        action_timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS,
        navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS,
    ) -> None:
        """
        Args:
            probe: Facts and controls of the live page.
            persona: Label used in every log line (e.g. a username).
            evidence_dir: Where failure screenshots go; None disables them.
            credential_store: Receives accounts created by ``register``.
            cancel: Default token ending the blocking waits.
            action_timeout_ms: Timeout for single element interactions.
            navigation_timeout_ms: Timeout for route changes.
        """
        self._probe = probe
        self._persona = persona
        self._evidence_dir = evidence_dir
        self._store = credential_store
        self._cancel = cancel or CancelToken()
        self._timeout = action_timeout_ms
        self._nav_timeout = navigation_timeout_ms

    @property
    def persona(self) -> str:
        return self._persona

    # -- Logging / diagnostics -----------------------------------------------

    def _log(self, action_id: int, name: str, status: str, msg: str = "") -> None:
        logger.info("[%s][Action %02d] %s: %s %s", self._persona, action_id, name, status, msg)

    def _warn(self, action_id: int, name: str, status: str, msg: str = "") -> None:
        logger.warning("[%s][Action %02d] %s: %s %s", self._persona, action_id, name, status, msg)

    def _fail(self, action_id: int, name: str, slug: str, exc: BaseException) -> None:
        """Log an unexpected failure and capture a screenshot."""
        self._warn(action_id, name, "失敗", str(exc))
        path = self._capture_screenshot(action_id, slug)
        if path:
            self._log(action_id, name, "已截圖", path)

    def _capture_screenshot(self, action_id: int, slug: str) -> str | None:
        if self._evidence_dir is None:
            return None
        filename = f"action-{action_id:02d}-{slug}-error-{int(time.time() * 1000)}.png"
        filepath = self._evidence_dir / filename
        try:
            self._evidence_dir.mkdir(parents=True, exist_ok=True)
            self._probe.screenshot(str(filepath))
            return str(filepath)
        except Exception as exc:
            logger.warning("[%s] Screenshot failed: %s", self._persona, exc)
            return None

    # -- Shared protocol pieces ----------------------------------------------

    def _poll(self, predicate: Callable[[], bool], timeout_ms: int, step_ms: int = 250) -> bool:
        """Re-check ``predicate`` until it holds or ``timeout_ms`` elapses."""
        waited = 0
        while True:
            if predicate():
                return True
            if waited >= timeout_ms:
                return False
            self._probe.pause(step_ms)
            waited += step_ms

    def _block_until(
        self,
        ready: Callable[[], bool],
        cancel: CancelToken,
        timeout_ms: int | None = None,
    ) -> bool:
        """Repeat a bounded wait until it succeeds.

        ``ready`` should itself wait at most ``BLOCKING_SLICE_MS``. Without
        ``timeout_ms`` this only ends through ``cancel``.
        """
        started = time.monotonic()
        while not cancel.cancelled:
            if ready():
                return True
            if timeout_ms is not None and (time.monotonic() - started) * 1000 >= timeout_ms:
                return False
        return False

    def _ensure_tab(self, tab: str) -> bool:
        """Switch to ``tab`` unless already there. Returns True if it clicked."""
        if self._probe.is_tab_active(tab):
            return False
        self._probe.tab(tab).click(timeout=self._timeout)
        self._probe.pause(SWITCH_SETTLE_MS)
        return True

    def _ensure_mode(self, mode: str) -> bool:
        """Select a buy/sell/long/short mode unless already selected."""
        if self._probe.is_mode_active(mode):
            return False
        self._probe.mode(mode).click(timeout=self._timeout)
        self._probe.pause(SWITCH_SETTLE_MS)
        return True

    def _refill(self, control: UIControl, value: str) -> None:
        control.fill("", timeout=self._timeout)
        control.fill(value, timeout=self._timeout)

    def _set_react_value(self, control: UIControl, value: str) -> None:
        control.wait_for(state="visible", timeout=self._timeout)
        control.evaluate(_SET_REACT_VALUE_JS, value)

    def _confirm_dialog(self) -> None:
        """Accept the confirmation dialog and wait for it to go away."""
        dialog = self._probe.confirm_dialog()
        dialog.wait_for(state="visible", timeout=DIALOG_TIMEOUT_MS)
        self._probe.confirm_button().click(timeout=self._timeout)
        if not self._probe.wait_hidden(dialog, DIALOG_TIMEOUT_MS):
            raise ActionError("確認視窗未關閉")

    def _loan_open(self) -> bool:
        return self._probe.is_modal_open(ui.ANCHOR_LOAN) or self._probe.loan_title().is_visible()

    # ==================== Auth & Basic ====================

    def wait_for_game_start(self, cancel: CancelToken | None = None) -> bool:
        """Action 00: block until the game clock is visibly ticking.

        Waits for a clock-shaped countdown, then samples it every two seconds
        until two samples differ. Only cancellation ends the wait early.
        """
        token = cancel or self._cancel
        name = "等待遊戲開始"
        self._log(0, name, "等待", "偵測倒數計時器")
        try:
            timer = self._probe.countdown_timer()
            if not self._block_until(lambda: self._probe.wait_visible(timer, BLOCKING_SLICE_MS), token):
                self._warn(0, name, "已取消")
                return False

            previous = self._probe.countdown_text()
            self._probe.pause(GAME_CLOCK_SAMPLE_MS)
            current = self._probe.countdown_text()
            while current == previous:
                if token.cancelled:
                    self._warn(0, name, "已取消", f"計時器停在 {current}")
                    return False
                self._log(0, name, "等待", f"計時器未變動 ({current})")
                previous = current
                self._probe.pause(GAME_CLOCK_SAMPLE_MS)
                current = self._probe.countdown_text()

            self._log(0, name, "成功", f"{previous} -> {current}")
            return True
        except Exception as exc:
            self._fail(0, name, "wait-game-start", exc)
            return False

    def register(self, nick: str, user: str, password: str) -> bool:
        """Action 01: sign up a new account and store its credential."""
        name = "註冊"
        if not nick or not user or not password:
            self._warn(1, name, "失敗", "暱稱、帳號、密碼皆不可為空")
            return False
        self._log(1, name, "開始", user)
        try:
            self._probe.button(ui.SIGNUP_BUTTON).click(timeout=self._timeout)
            dialog = self._probe.signup_dialog()
            dialog.wait_for(state="visible", timeout=3_000)
            self._log(1, name, "Modal已開啟")

            self._probe.signup_field("displayName").fill(nick, timeout=self._timeout)
            self._probe.signup_field("username").fill(user, timeout=self._timeout)
            self._probe.signup_field("password").fill(password, timeout=self._timeout)
            self._probe.signup_field("confirmPassword").fill(password, timeout=self._timeout)
            self._log(1, name, "表單已填寫")

            self._probe.button(ui.SIGNUP_SUBMIT).click(timeout=self._timeout)
            self._probe.toast(ui.REGISTER_TOAST).wait_for(state="visible", timeout=TOAST_TIMEOUT_MS)
            self._log(1, name, "成功 Toast 已顯示")

            if self._store is not None:
                total = self._store.append(Credential(username=user, password=password, registered=True))
                self._log(1, name, "已寫入帳號檔", f"Total: {total}")

            self._log(1, name, "成功", user)
            return True
        except Exception as exc:
            self._fail(1, name, "register", exc)
            return False

    def login(self, user: str, password: str) -> bool:
        """Action 02: log in; requires both the home route and a session token."""
        name = "登入"
        if not user or not password:
            self._warn(2, name, "失敗", "帳號或密碼為空")
            return False
        self._log(2, name, "開始", user)
        try:
            self._probe.goto(ui.ROUTE_ROOT)
            self._probe.login_field("username").fill(user, timeout=self._timeout)
            self._probe.login_field("password").fill(password, timeout=self._timeout)
            self._probe.button(ui.LOGIN_BUTTON).click(timeout=self._timeout)

            if not self._probe.wait_for_route(ui.ROUTE_HOME, self._nav_timeout):
                raise ActionError(f"未導向 {ui.ROUTE_HOME}（目前 {self._probe.current_url()}）")
            if not self._poll(self._probe.has_session_token, 3_000):
                raise ActionError("localStorage 中沒有 session token")

            self._log(2, name, "成功", user)
            return True
        except Exception as exc:
            self._fail(2, name, "login", exc)
            return False

    def change_avatar(self, index: int) -> bool:
        """Action 03: pick avatar ``avatar_{index:02d}`` from the picker."""
        name = "換頭像"
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index <= MAX_AVATAR_INDEX:
            self._warn(3, name, "失敗", f"頭像編號需介於 0-{MAX_AVATAR_INDEX}: {index!r}")
            return False
        target = f"avatar_{index:02d}"
        self._log(3, name, "開始", target)
        try:
            if not self._probe.is_on_home():
                self._probe.goto(ui.ROUTE_HOME)

            self._probe.user_menu().click(timeout=self._timeout)
            self._probe.button(ui.AVATAR_MENU_ITEM).click(timeout=self._timeout)
            if not self._poll(lambda: self._probe.is_modal_open(ui.ANCHOR_AVATAR), 3_000):
                raise ActionError("頭像選擇器未開啟")

            cell = self._probe.avatar_cell(index)
            try:
                cell.scroll_into_view_if_needed(timeout=3_000)
            except Exception as exc:
                # Grid cells sit under an animated overlay; force-click anyway
                logger.debug("[%s] scroll to %s failed: %s", self._persona, target, exc)
            cell.click(force=True, timeout=self._timeout)
            self._probe.button(ui.SAVE_BUTTON).click(timeout=self._timeout)

            closed = self._poll(lambda: not self._probe.is_modal_open(ui.ANCHOR_AVATAR), DIALOG_TIMEOUT_MS)
            src = self._probe.current_avatar_src() or ""
            if closed:
                self._log(3, name, "成功", target)
                return True
            if target in src:
                self._warn(3, name, "成功", f"選擇器未關閉但頭像已是 {target}（快取延遲）")
                return True
            raise ActionError("頭像選擇器未關閉")
        except Exception as exc:
            self._fail(3, name, "change-avatar", exc)
            return False

    def set_employee_status(self, is_employee: bool) -> bool:
        """Action 19: flip the employee switch in the user menu if needed."""
        name = "設定員工身分"
        if not isinstance(is_employee, bool):
            self._warn(19, name, "失敗", f"參數需為布林值: {is_employee!r}")
            return False
        self._log(19, name, "開始", "員工" if is_employee else "非員工")
        try:
            self._probe.user_menu().click(timeout=self._timeout)
            switch = self._probe.employee_switch()
            switch.wait_for(state="visible", timeout=self._timeout)
            if self._probe.employee_switch_checked() == is_employee:
                self._log(19, name, "跳過", "已是目標狀態")
                return True

            switch.click(timeout=self._timeout)
            if not self._poll(lambda: self._probe.employee_switch_checked() == is_employee, 3_000):
                raise ActionError("開關狀態未更新")
            self._log(19, name, "成功")
            return True
        except Exception as exc:
            self._fail(19, name, "employee-status", exc)
            return False

    # ==================== Data ====================

    def read_assets(self) -> AssetSnapshot | None:
        """Action 04: read the five balance fields. All or nothing."""
        name = "讀取資產"
        try:
            if not self._probe.wait_visible(self._probe.asset_anchor(), ASSET_ANCHOR_TIMEOUT_MS):
                self._warn(4, name, "失敗", "找不到資產區塊")
                return None

            values: dict[str, float] = {}
            for key, label in ui.ASSET_LABELS.items():
                text = self._probe.asset_field_text(label)
                if text is None:
                    self._warn(4, name, "失敗", f"找不到欄位「{label}」")
                    return None
                values[key] = parse_currency(text)

            snapshot = AssetSnapshot(**values)
            if not snapshot.is_consistent():
                self._warn(4, name, "警告", f"總資產誤差 {snapshot.identity_gap:.2f}")
            self._log(4, name, "成功", snapshot.describe())
            return snapshot
        except Exception as exc:
            self._fail(4, name, "read-assets", exc)
            return None

    def read_contracts(self) -> ContractBook | None:
        """Action 05: read margin and open positions.

        No positions is a valid empty book. Cards that don't parse are
        skipped, so the book is best-effort rather than atomic.
        """
        name = "讀取合約"
        try:
            self._ensure_tab(ui.CONTRACT_TAB)
            if not self._probe.has_positions():
                self._log(5, name, "成功", "無持倉")
                return EMPTY_BOOK

            margin = parse_currency(self._probe.margin_text())
            positions = []
            for i, lines in enumerate(self._probe.contract_cards()):
                position = parse_contract_card(lines)
                if position is None:
                    self._warn(5, name, "跳過", f"第 {i + 1} 張卡片無法解析: {' / '.join(lines)}")
                    continue
                positions.append(position)

            book = ContractBook(margin=margin, contracts=tuple(positions))
            self._log(5, name, "成功", f"保證金=${margin:.2f} 合約數={len(book)}")
            return book
        except Exception as exc:
            self._fail(5, name, "read-contracts", exc)
            return None

    def get_current_stock_price(self) -> float:
        """Read the current spot price; 0 when it can't be read."""
        try:
            return parse_currency(self._probe.stock_price_text())
        except Exception as exc:
            self._warn(22, "讀取股價", "失敗", str(exc))
            return 0.0

    def read_game_day(self) -> int | None:
        """Read the in-game day counter (``第 N 天``)."""
        try:
            return parse_game_day(self._probe.game_day_text())
        except Exception as exc:
            self._warn(23, "讀取天數", "失敗", str(exc))
            return None

    # ==================== Trading ====================

    def buy_stock(self, lots: int) -> bool:
        """Action 06: buy ``lots`` lots on the spot tab."""
        return self._trade_stock(6, "買入股票", "buy-stock", ui.BUY_MODE, lots)

    def sell_stock(self, lots: int) -> bool:
        """Action 07: sell ``lots`` lots on the spot tab."""
        return self._trade_stock(7, "賣出股票", "sell-stock", ui.SELL_MODE, lots)

    def _trade_stock(self, action_id: int, name: str, slug: str, mode: str, lots: int) -> bool:
        if not _is_positive_int(lots):
            self._warn(action_id, name, "失敗", f"張數需為正整數: {lots!r}")
            return False
        self._log(action_id, name, "開始", f"{lots} 張")
        try:
            self._ensure_tab(ui.SPOT_TAB)
            self._ensure_mode(mode)
            self._refill(self._probe.quantity_input(), str(lots))

            button = self._probe.trade_button()
            if button.is_disabled():
                self._warn(action_id, name, "失敗", "按鈕已停用（資金/持股不足或遊戲未開始）")
                return False
            button.click(timeout=self._timeout)
            self._confirm_dialog()

            self._log(action_id, name, "成功", f"{lots} 張")
            return True
        except Exception as exc:
            self._fail(action_id, name, slug, exc)
            return False

    def buy_contract(self, direction: Direction, leverage: float, lots: int) -> bool:
        """Action 08: open a contract position."""
        name = "買入合約"
        if direction not in ("LONG", "SHORT"):
            self._warn(8, name, "失敗", f"方向需為 LONG 或 SHORT: {direction!r}")
            return False
        if not _is_positive_number(leverage):
            self._warn(8, name, "失敗", f"槓桿需為正數: {leverage!r}")
            return False
        if not _is_positive_int(lots):
            self._warn(8, name, "失敗", f"張數需為正整數: {lots!r}")
            return False

        self._log(8, name, "開始", f"{direction} {_fmt(leverage)}倍 {lots}張")
        try:
            self._ensure_tab(ui.CONTRACT_TAB)
            self._ensure_mode(ui.LONG_MODE if direction == "LONG" else ui.SHORT_MODE)
            self._refill(self._probe.numeric_input(ui.LEVERAGE_LABEL, 0), _fmt(leverage))
            self._refill(self._probe.numeric_input(ui.LOTS_LABEL, 1), str(lots))

            button = self._probe.trade_button()
            if button.is_disabled():
                self._warn(8, name, "失敗", "按鈕已停用（保證金不足或遊戲未開始）")
                return False
            button.click(timeout=self._timeout)
            self._confirm_dialog()

            self._log(8, name, "成功", f"{direction} {_fmt(leverage)}倍 {lots}張")
            return True
        except Exception as exc:
            self._fail(8, name, "buy-contract", exc)
            return False

    def cancel_all_contracts(self) -> bool:
        """Action 09: cancel today's contracts; a no-op on an empty book.

        Succeeds only once the position list has cleared within the settle
        window.
        """
        name = "撤銷今日合約"
        book = self.read_contracts()
        if book is None:
            self._warn(9, name, "失敗", "無法讀取合約")
            return False
        if book.is_empty:
            self._log(9, name, "跳過", "目前無合約")
            return True

        self._log(9, name, "開始", f"{len(book)} 筆合約")
        try:
            self._probe.button(ui.CANCEL_ALL_BUTTON).click(timeout=self._timeout)
            self._confirm_dialog()
            if not self._poll(lambda: not self._probe.has_positions(), CANCEL_SETTLE_MS, step_ms=500):
                raise ActionError(f"撤銷後 {CANCEL_SETTLE_MS // 1000} 秒仍顯示持倉")
            self._log(9, name, "成功")
            return True
        except Exception as exc:
            self._fail(9, name, "cancel-contracts", exc)
            return False

    # ==================== Loan ====================

    def open_loan_shark(self) -> bool:
        """Action 10: open the loan-shark modal from the home route."""
        name = "開啟地下錢莊"
        try:
            if self._loan_open():
                self._log(10, name, "跳過", "已開啟")
                return True
            if not self._probe.is_on_home():
                self._probe.goto(ui.ROUTE_HOME)
                if not self._probe.wait_for_route(ui.ROUTE_HOME, self._nav_timeout):
                    raise ActionError("無法回到主頁")

            self._probe.loan_entry().click(timeout=self._timeout)
            self._probe.loan_title().wait_for(state="visible", timeout=DIALOG_TIMEOUT_MS)
            if not self._poll(lambda: self._probe.is_modal_open(ui.ANCHOR_LOAN), 2_000):
                self._warn(10, name, "警告", f"網址未出現 {ui.ANCHOR_LOAN}")
            self._log(10, name, "成功")
            return True
        except Exception as exc:
            self._fail(10, name, "open-loan-shark", exc)
            return False

    def close_loan_shark(self) -> bool:
        """Action 21: close the loan-shark modal; trivially true if closed."""
        name = "關閉地下錢莊"
        try:
            if not self._loan_open():
                self._log(21, name, "跳過", "未開啟")
                return True
            title = self._probe.loan_title()
            self._probe.loan_close().click(timeout=self._timeout)
            if not self._probe.wait_hidden(title, DIALOG_TIMEOUT_MS):
                raise ActionError("Modal 未關閉")
            if not self._poll(lambda: not self._probe.is_modal_open(ui.ANCHOR_LOAN), 2_000):
                self._warn(21, name, "警告", f"網址仍有 {ui.ANCHOR_LOAN}")
            self._log(21, name, "成功")
            return True
        except Exception as exc:
            self._fail(21, name, "close-loan-shark", exc)
            return False

    def handle_loan(self, action: LoanAction, amount: float) -> bool:
        """Action 11: borrow or repay ``amount`` through the loan modal."""
        name = "借/還錢"
        if action not in ("BORROW", "REPAY"):
            self._warn(11, name, "失敗", f"動作需為 BORROW 或 REPAY: {action!r}")
            return False
        if not _is_positive_number(amount):
            self._warn(11, name, "失敗", f"金額需大於 0: {amount!r}")
            return False

        target = ui.BORROW_LABEL if action == "BORROW" else ui.REPAY_LABEL
        self._log(11, name, "開始", f"{target} ${_fmt(amount)}")
        if not self._loan_open() and not self.open_loan_shark():
            self._warn(11, name, "失敗", "無法開啟地下錢莊")
            return False

        try:
            if self._probe.current_toggle_label() != target:
                self._probe.loan_toggle().click(timeout=self._timeout)
                if not self._poll(lambda: self._probe.current_toggle_label() == target, 3_000):
                    raise ActionError(f"無法切換至「{target}」")

            self._set_react_value(self._probe.loan_amount_input(), _fmt(amount))

            submit = self._probe.loan_submit()
            if submit.is_disabled():
                self._warn(11, name, "失敗", "送出按鈕已停用（金額超出限制或現金不足）")
                self.close_loan_shark()
                return False
            submit.click(timeout=self._timeout)
            self._confirm_dialog()

            ok = True
            if self._probe.wait_visible(self._probe.toast(ui.ERROR_TOAST), 1_500):
                self._warn(11, name, "失敗", "顯示錯誤提示")
                ok = False
            elif self._probe.wait_visible(self._probe.toast(ui.SUCCESS_TOAST), 1_500):
                self._log(11, name, "成功 Toast 已顯示")
            else:
                # The toast may already be gone; not a failure on its own
                self._log(11, name, "等待", "未捕捉到提示訊息")

            self.close_loan_shark()
            if ok:
                self._log(11, name, "成功", f"{target} ${_fmt(amount)}")
            return ok
        except Exception as exc:
            self._fail(11, name, "handle-loan", exc)
            return False

    def interact_with_loan_shark(self) -> bool:
        """Action 20: click the merchant and report whether the dialogue changed.

        Dialogue detection is heuristic (see ``pick_dialogue_text``); a page
        with no dialogue-shaped text reads as "" and reports no change.
        """
        name = "與地下錢莊主人互動"
        if not self._loan_open() and not self.open_loan_shark():
            self._warn(20, name, "失敗", "無法開啟地下錢莊")
            return False
        try:
            before = self._probe.dialogue_text()
            self._probe.merchant_avatar().click(timeout=self._timeout)
            self._probe.pause(1_000)
            after = self._probe.dialogue_text()

            if not after:
                self._warn(20, name, "失敗", "未偵測到對話文字")
                return False
            if after == before:
                self._warn(20, name, "失敗", f"對話未變化: {after}")
                return False
            self._log(20, name, "成功", f"{before or '(空)'} -> {after}")
            return True
        except Exception as exc:
            self._fail(20, name, "interact-loan-shark", exc)
            return False

    # ==================== Quiz ====================

    def _wait_for_overlay(
        self,
        action_id: int,
        name: str,
        title: UIControl,
        cancel: CancelToken,
    ) -> bool:
        def ready() -> bool:
            if self._probe.wait_visible(title, BLOCKING_SLICE_MS):
                return True
            # Title rendered but overlay collapsed: reopen it
            if title.count() > 0:
                opener = self._probe.open_minigame()
                if opener.is_visible():
                    self._log(action_id, name, "等待", "點擊開啟小遊戲")
                    opener.click(timeout=self._timeout)
            return False

        self._log(action_id, name, "等待")
        if not self._block_until(ready, cancel):
            self._warn(action_id, name, "已取消")
            return False
        self._log(action_id, name, "成功", "Overlay 已顯示")
        return True

    def _wait_for_round_end(
        self,
        action_id: int,
        name: str,
        title: UIControl,
        marker: UIControl,
        cancel: CancelToken,
    ) -> bool:
        """Block until both the overlay title and the result marker are gone."""

        def cleared() -> bool:
            return self._probe.wait_hidden(marker, BLOCKING_SLICE_MS) and self._probe.wait_hidden(
                title, BLOCKING_SLICE_MS
            )

        self._log(action_id, name, "等待", "等待本回合結束")
        if not self._block_until(cleared, cancel):
            self._warn(action_id, name, "已取消", "本回合畫面仍在")
            return False
        self._log(action_id, name, "成功", "本回合已結束")
        return True

    def wait_for_quiz_start(self, cancel: CancelToken | None = None) -> bool:
        """Action 12: block until the quiz overlay shows."""
        name = "等待問答開始"
        try:
            return self._wait_for_overlay(12, name, self._probe.quiz_title(), cancel or self._cancel)
        except Exception as exc:
            self._fail(12, name, "wait-quiz-start", exc)
            return False

    def answer_quiz(self, option: Option) -> bool:
        """Action 13: wait out the countdown and click ``option``."""
        name = "問答作答"
        if option not in OPTIONS:
            self._warn(13, name, "失敗", f"選項需為 A-D: {option!r}")
            return False
        self._log(13, name, "開始", option)
        try:
            if not self._probe.wait_hidden(self._probe.quiz_countdown(), QUIZ_COUNTDOWN_TIMEOUT_MS):
                self._log(13, name, "等待", "倒數未結束，繼續等待選項")
            if not self._probe.wait_visible(self._probe.any_answer_option(), ANSWER_OPTIONS_TIMEOUT_MS):
                raise ActionError("選項按鈕未出現")

            button = self._probe.answer_option(option)
            button.click(timeout=self._timeout)
            self._probe.pause(500)
            if button.is_disabled():
                self._log(13, name, "成功", f"{option}（按鈕已鎖定）")
            else:
                self._log(13, name, "成功", f"{option}（按鈕未鎖定，可能為網路延遲）")
            return True
        except Exception as exc:
            self._fail(13, name, "answer-quiz", exc)
            return False

    def wait_quiz_result_and_report(
        self,
        timeout_ms: int = RESULT_TIMEOUT_MS,
        cancel: CancelToken | None = None,
    ) -> AssetSnapshot | None:
        """Action 14: wait for the "正確答案" marker, then read assets."""
        name = "問答結果報告"
        token = cancel or self._cancel
        self._log(14, name, "等待", "等待結算")
        try:
            marker = self._probe.correct_answer_marker()
            if not self._block_until(lambda: self._probe.wait_visible(marker, BLOCKING_SLICE_MS), token, timeout_ms):
                raise ActionError(f"{timeout_ms // 1000} 秒內未出現結算結果")
            answer = parse_correct_answer(self._probe.result_text())
            self._log(14, name, "結算", f"正確答案 {answer or '?'}")
        except Exception as exc:
            self._fail(14, name, "quiz-result", exc)
            return None
        return self.read_assets()

    def wait_for_quiz_end(self, cancel: CancelToken | None = None) -> bool:
        """Action 14: after settlement, block until the quiz overlay is dismissed."""
        name = "問答結束"
        try:
            return self._wait_for_round_end(
                14, name, self._probe.quiz_title(), self._probe.correct_answer_marker(), cancel or self._cancel
            )
        except Exception as exc:
            self._fail(14, name, "quiz-end", exc)
            return False

    # ==================== Minority ====================

    def wait_for_minority_start(self, cancel: CancelToken | None = None) -> bool:
        """Action 15: block until the minority-game overlay shows."""
        name = "等待少數決開始"
        try:
            return self._wait_for_overlay(15, name, self._probe.minority_title(), cancel or self._cancel)
        except Exception as exc:
            self._fail(15, name, "wait-minority-start", exc)
            return False

    def bet_minority(self, option: Option, amount: float) -> bool:
        """Action 16: stake ``amount`` on ``option``.

        A disabled submit button means the stake isn't affordable; that is
        reported as a plain failure so the caller can borrow and retry.
        """
        name = "少數決下注"
        if option not in OPTIONS:
            self._warn(16, name, "失敗", f"選項需為 A-D: {option!r}")
            return False
        if not _is_positive_number(amount):
            self._warn(16, name, "失敗", f"金額需大於 0: {amount!r}")
            return False
        self._log(16, name, "開始", f"{option} ${_fmt(amount)}")
        try:
            if not self._probe.wait_visible(self._probe.any_answer_option(), ANSWER_OPTIONS_TIMEOUT_MS):
                raise ActionError("選項按鈕未出現")
            self._probe.answer_option(option).click(timeout=self._timeout)
            self._set_react_value(self._probe.minority_amount_input(), _fmt(amount))

            submit = self._probe.minority_submit()
            if submit.is_disabled():
                self._warn(16, name, "失敗", "下注按鈕已停用（現金不足或已截止）")
                return False
            submit.click(timeout=self._timeout)

            dialog = self._probe.confirm_dialog()
            if self._probe.wait_visible(dialog, 2_000):
                self._confirm_dialog()
            self._log(16, name, "成功", f"{option} ${_fmt(amount)}")
            return True
        except Exception as exc:
            self._fail(16, name, "bet-minority", exc)
            return False

    def close_borrow_and_return(self, amount: float) -> bool:
        """Action 17: collapse the mini-game, borrow ``amount``, come back."""
        name = "借錢週轉"
        if not _is_positive_number(amount):
            self._warn(17, name, "失敗", f"金額需大於 0: {amount!r}")
            return False
        self._log(17, name, "開始", f"${_fmt(amount)}")
        try:
            collapse = self._probe.collapse_overlay()
            if collapse.is_visible():
                collapse.click(timeout=self._timeout)
                self._probe.pause(SWITCH_SETTLE_MS)
        except Exception as exc:
            self._fail(17, name, "borrow-and-return", exc)
            return False

        if not self.handle_loan("BORROW", amount):
            self._warn(17, name, "失敗", "借款失敗")
            return False

        try:
            self._probe.open_minigame().click(timeout=self._timeout)
            self._probe.minority_title().wait_for(state="visible", timeout=DIALOG_TIMEOUT_MS)
            self._log(17, name, "成功", "已回到小遊戲")
            return True
        except Exception as exc:
            self._fail(17, name, "borrow-and-return", exc)
            return False

    def wait_minority_result_and_report(
        self,
        timeout_ms: int = RESULT_TIMEOUT_MS,
        cancel: CancelToken | None = None,
    ) -> AssetSnapshot | None:
        """Action 18: wait for the minority settlement, then read assets."""
        name = "少數決結果報告"
        token = cancel or self._cancel
        self._log(18, name, "等待", "等待結算")
        try:
            marker = self._probe.minority_result_marker()
            if not self._block_until(lambda: self._probe.wait_visible(marker, BLOCKING_SLICE_MS), token, timeout_ms):
                raise ActionError(f"{timeout_ms // 1000} 秒內未出現結算結果")
            self._log(18, name, "結算", self._probe.result_text() or "")
        except Exception as exc:
            self._fail(18, name, "minority-result", exc)
            return None
        return self.read_assets()

    def wait_for_minority_end(self, cancel: CancelToken | None = None) -> bool:
        """Action 18: after settlement, block until the minority overlay is dismissed."""
        name = "少數決結束"
        try:
            return self._wait_for_round_end(
                18, name, self._probe.minority_title(), self._probe.minority_result_marker(), cancel or self._cancel
            )
        except Exception as exc:
            self._fail(18, name, "minority-end", exc)
            return False
