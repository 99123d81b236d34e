"""Playwright-backed view of the Stock Sprint UI.

This module is the only place that knows the game's UI contract: label
strings, modal titles, antd-mobile state classes, routes and URL fragment
anchors. When the frontend changes, update the constants and locators here;
the action library only sees facts ("is the contract tab active?") and
control handles.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from sprintstress.engine.state_parser import is_countdown_text, pick_dialogue_text

if TYPE_CHECKING:
    from playwright.sync_api import Locator, Page

logger = logging.getLogger("sprintstress.engine.probe")

# -- Routes and anchors ------------------------------------------------------

ROUTE_ROOT = "/"
ROUTE_HOME = "/home"
ANCHOR_AVATAR = "#avatar"
ANCHOR_LOAN = "#loan-shark"
SESSION_TOKEN_KEYS = ("token", "accessToken", "authToken")

# -- Labels ------------------------------------------------------------------

ASSET_LABELS = {
    "total_assets": "總資產",
    "cash": "現金",
    "stock_value": "股票現值",
    "stock_count": "持有股數",
    "debt": "負債",
}
STOCK_PRICE_LABEL = "股價"
MARGIN_LABEL = "保證金"
POSITIONS_ANCHOR_TEXT = "持有合約"
LOAN_TITLE = "地下錢莊"
QUIZ_TITLE = "機智問答"
MINORITY_TITLE = "⚖️ 全場少數決"
EMPLOYEE_LABEL = "員工身分"

SPOT_TAB = "現貨"
CONTRACT_TAB = "合約"
BUY_MODE = "買入"
SELL_MODE = "賣出"
LONG_MODE = "做多"
SHORT_MODE = "做空"
LEVERAGE_LABEL = "槓桿"
LOTS_LABEL = "張數"
BORROW_LABEL = "借款"
REPAY_LABEL = "還款"

SIGNUP_BUTTON = "線上開戶"
SIGNUP_SUBMIT = "送出"
LOGIN_BUTTON = "登入"
AVATAR_MENU_ITEM = "更換頭像"
SAVE_BUTTON = "儲存"
CANCEL_ALL_BUTTON = "撤銷今日合約"
REGISTER_TOAST = "註冊成功"
SUCCESS_TOAST = "成功"
ERROR_TOAST = "失敗"

LOAN_UI_LABELS = ("借款", "還款", LOAN_TITLE, "利率", "金額", "確認", "取消", "關閉", "總資產", "現金", "負債")

# antd-mobile state markers
_ACTIVE_TAB_CLASS = "adm-tabs-tab-active"
_FILLED_BUTTON_CLASS = "adm-button-fill-solid"
_SWITCH_CHECKED_CLASS = "adm-switch-checked"

_DIALOG_SELECTOR = ".adm-center-popup-body"
_DIALOG_FOOTER_BUTTONS = ".adm-dialog-footer button, .adm-modal-footer button"
_TOAST_SELECTOR = ".ant-message-notice-content, .adm-toast-main"
_POSITION_CARD_SELECTOR = "[class*='position-card'], [class*='contract-card']"
_COUNTDOWN_RE = re.compile(r"^\s*\d{1,2}:\d{2}\s*$")
_GAME_DAY_RE = re.compile(r"第\s*\d+\s*天")
_QUIZ_COUNTDOWN_RE = re.compile(r"^\s*[1-3]\s*$")
_CORRECT_ANSWER_RE = re.compile(r"正確答案")
_RESULT_RE = re.compile(r"正確答案|少數決結果|獲勝選項")

_COLLECT_TEXT_BLOCKS_JS = """
() => Array.from(document.querySelectorAll('div, p, span'))
    .filter(el => el.offsetParent !== null)
    .map(el => (el.innerText || '').trim())
    .filter(t => t.length > 0)
"""

_SESSION_TOKEN_JS = """
(keys) => keys.some(k => {
    const v = window.localStorage.getItem(k);
    return v !== null && v !== '' && v !== 'null';
})
"""


class AppStateProbe:
    """Facts and controls of one live game page."""

    def __init__(self, page: Page, base_url: str) -> None:
        self._page = page
        self._base_url = base_url.rstrip("/")

    @property
    def page(self) -> Page:
        return self._page

    # -- Page / session ------------------------------------------------------

    def goto(self, route: str) -> None:
        self._page.goto(self._base_url + route, wait_until="domcontentloaded")

    def current_url(self) -> str:
        return self._page.url

    def wait_for_route(self, route: str, timeout_ms: int) -> bool:
        pattern = re.compile(re.escape(route) + r"(?:[?#].*)?$")
        try:
            self._page.wait_for_url(pattern, timeout=timeout_ms)
            return True
        except Exception as exc:
            logger.debug("Route %s not reached: %s", route, exc)
            return False

    def has_session_token(self) -> bool:
        try:
            return bool(self._page.evaluate(_SESSION_TOKEN_JS, list(SESSION_TOKEN_KEYS)))
        except Exception as exc:
            logger.debug("localStorage read failed: %s", exc)
            return False

    def pause(self, ms: int) -> None:
        self._page.wait_for_timeout(ms)

    def screenshot(self, path: str) -> None:
        self._page.screenshot(path=path, full_page=True)

    def wait_visible(self, control: Locator, timeout_ms: int) -> bool:
        try:
            control.wait_for(state="visible", timeout=timeout_ms)
            return True
        except Exception:
            return False

    def wait_hidden(self, control: Locator, timeout_ms: int) -> bool:
        try:
            control.wait_for(state="hidden", timeout=timeout_ms)
            return True
        except Exception:
            return False

    # -- Facts ---------------------------------------------------------------

    def is_on_home(self) -> bool:
        return urlparse(self._page.url).path.rstrip("/").endswith(ROUTE_HOME)

    def is_tab_active(self, tab: str) -> bool:
        return _has_class(self.tab(tab), _ACTIVE_TAB_CLASS)

    def is_mode_active(self, mode: str) -> bool:
        return _has_class(self.mode(mode), _FILLED_BUTTON_CLASS)

    def is_modal_open(self, anchor: str) -> bool:
        return urlparse(self._page.url).fragment == anchor.lstrip("#")

    def current_toggle_label(self) -> str:
        return (_safe_text(self.loan_toggle()) or "").strip()

    def asset_field_text(self, label: str) -> str | None:
        return _safe_text(self._sibling_of_label(label))

    def has_positions(self) -> bool:
        anchor = self._page.get_by_text(POSITIONS_ANCHOR_TEXT).first
        return anchor.count() > 0 and anchor.is_visible()

    def margin_text(self) -> str | None:
        return _safe_text(self._sibling_of_label(MARGIN_LABEL))

    def contract_cards(self) -> list[list[str]]:
        cards = self._page.locator(_POSITION_CARD_SELECTOR)
        result: list[list[str]] = []
        for i in range(cards.count()):
            try:
                text = cards.nth(i).inner_text(timeout=2000)
            except Exception as exc:
                logger.debug("Card %d unreadable: %s", i, exc)
                continue
            result.append([line for line in text.splitlines() if line.strip()])
        return result

    def countdown_text(self) -> str | None:
        text = _safe_text(self.countdown_timer())
        return text.strip() if text and is_countdown_text(text) else None

    def game_day_text(self) -> str | None:
        return _safe_text(self._page.get_by_text(_GAME_DAY_RE).first)

    def stock_price_text(self) -> str | None:
        return _safe_text(self._sibling_of_label(STOCK_PRICE_LABEL))

    def dialogue_text(self) -> str:
        """Best-effort dialogue box text; "" when nothing looks like dialogue."""
        try:
            blocks = self._page.evaluate(_COLLECT_TEXT_BLOCKS_JS)
        except Exception as exc:
            logger.debug("Text block collection failed: %s", exc)
            return ""
        return pick_dialogue_text(blocks or [], LOAN_UI_LABELS)

    def current_avatar_src(self) -> str | None:
        img = self._page.locator(".adm-avatar img").first
        if img.count() == 0:
            return None
        return img.get_attribute("src")

    def employee_switch_checked(self) -> bool:
        switch = self.employee_switch()
        if _has_class(switch, _SWITCH_CHECKED_CLASS):
            return True
        return (switch.get_attribute("aria-checked") or "").lower() == "true"

    def quiz_overlay_visible(self) -> bool:
        return _visible(self.quiz_title())

    def minority_overlay_visible(self) -> bool:
        return _visible(self.minority_title())

    def result_text(self) -> str | None:
        return _safe_text(self._page.get_by_text(_RESULT_RE).first)

    # -- Controls ------------------------------------------------------------

    def button(self, label: str) -> Locator:
        return self._page.locator("button").filter(has_text=label).first

    def signup_dialog(self) -> Locator:
        return self._page.locator(_DIALOG_SELECTOR).first

    def signup_field(self, field: str) -> Locator:
        # Scoped to the dialog; the background login form has same-named inputs
        dialog = self.signup_dialog()
        return dialog.locator(f'input[id*="{field}"]').first

    def login_field(self, field: str) -> Locator:
        return self._page.locator(f'input[id*="{field}"], input[name="{field}"]').first

    def user_menu(self) -> Locator:
        return self._page.locator(".adm-avatar").first

    def avatar_cell(self, index: int) -> Locator:
        return self._page.locator(f'img[src*="avatar_{index:02d}."]').first

    def employee_switch(self) -> Locator:
        row = self._page.locator(".adm-list-item").filter(has_text=EMPLOYEE_LABEL)
        return row.locator(".adm-switch").first

    def tab(self, tab: str) -> Locator:
        return self._page.locator(".adm-tabs-tab").filter(has_text=tab).first

    def mode(self, mode: str) -> Locator:
        return self._page.locator("button").filter(has_text=re.compile(rf"^\s*{re.escape(mode)}\s*$")).first

    def quantity_input(self) -> Locator:
        return self._page.locator('input[type="number"]:visible').first

    def numeric_input(self, label: str, position: int) -> Locator:
        """Resolve a numeric field by its label, else by position.

        Positional matching among visible number inputs is the degraded mode;
        it breaks whenever the panel adds or reorders a field.
        """
        labelled = self._page.get_by_label(label)
        try:
            if labelled.count() > 0 and labelled.first.is_visible():
                return labelled.first
        except Exception as exc:
            logger.debug("Label lookup for %s failed: %s", label, exc)
        logger.debug("No label association for %s; using visible input #%d", label, position)
        return self._page.locator('input[type="number"]:visible').nth(position)

    def trade_button(self) -> Locator:
        return self._page.locator("button").filter(has_text="下單").first

    def confirm_dialog(self) -> Locator:
        return self._page.locator(".adm-dialog, .adm-modal").first

    def confirm_button(self) -> Locator:
        # Footer order is [取消, 確認]
        return self._page.locator(_DIALOG_FOOTER_BUTTONS).nth(1)

    def toast(self, text: str) -> Locator:
        return self._page.locator(_TOAST_SELECTOR).filter(has_text=text).first

    def asset_anchor(self) -> Locator:
        return self._page.get_by_text(ASSET_LABELS["total_assets"], exact=True).first

    def countdown_timer(self) -> Locator:
        return self._page.get_by_text(_COUNTDOWN_RE).first

    def loan_entry(self) -> Locator:
        return self._page.locator("button, div[role='button']").filter(has_text=LOAN_TITLE).first

    def loan_title(self) -> Locator:
        return self._page.locator("span").filter(has_text=re.compile(rf"^{LOAN_TITLE}$")).first

    def loan_close(self) -> Locator:
        return self._page.locator(".adm-popup-close-icon, .adm-center-popup-close, button:has-text('關閉')").first

    def loan_toggle(self) -> Locator:
        return self._page.locator("button").filter(has_text=re.compile(r"^\s*(借款|還款)\s*$")).first

    def loan_amount_input(self) -> Locator:
        return self._page.locator(f"{_DIALOG_SELECTOR} input, .adm-popup-body input").first

    def loan_submit(self) -> Locator:
        return self._page.locator("button").filter(has_text=re.compile(r"^確認(借款|還款)$")).first

    def merchant_avatar(self) -> Locator:
        return self._page.locator('img[alt*="沈梟"], img[src*="merchant"]').first

    def quiz_title(self) -> Locator:
        return self._page.get_by_text(QUIZ_TITLE).first

    def quiz_countdown(self) -> Locator:
        return self._page.get_by_text(_QUIZ_COUNTDOWN_RE).first

    def answer_option(self, option: str) -> Locator:
        return self._page.locator("button").filter(has_text=re.compile(rf"^\s*{option}\.")).first

    def any_answer_option(self) -> Locator:
        return self._page.locator("button").filter(has_text=re.compile(r"^\s*[A-D]\.")).first

    def correct_answer_marker(self) -> Locator:
        return self._page.get_by_text(_CORRECT_ANSWER_RE).first

    def minority_title(self) -> Locator:
        return self._page.get_by_text(MINORITY_TITLE).first

    def minority_result_marker(self) -> Locator:
        return self._page.get_by_text(re.compile(r"少數決結果|獲勝選項")).first

    def minority_amount_input(self) -> Locator:
        return self._page.locator('input[type="number"]:visible').first

    def minority_submit(self) -> Locator:
        return self._page.locator("button").filter(has_text="下注").first

    def open_minigame(self) -> Locator:
        return self._page.locator("button").filter(has_text="開啟小遊戲").first

    def collapse_overlay(self) -> Locator:
        return self._page.locator("button").filter(has_text=re.compile(r"^收起$")).first

    # -- Helpers -------------------------------------------------------------

    def _sibling_of_label(self, label: str) -> Locator:
        return self._page.locator(
            f'xpath=//*[normalize-space(text())="{label}"]/following-sibling::*[1]'
        ).first


def _has_class(control: Any, class_name: str) -> bool:
    try:
        classes = control.get_attribute("class", timeout=2000) or ""
    except Exception:
        return False
    return class_name in classes.split()


def _safe_text(control: Any) -> str | None:
    try:
        if control.count() == 0:
            return None
        return control.text_content(timeout=2000)
    except Exception:
        return None


def _visible(control: Any) -> bool:
    try:
        return control.count() > 0 and control.is_visible()
    except Exception:
        return False
