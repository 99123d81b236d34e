"""Contracts between the action library and the page it drives.

``GameActions`` never touches Playwright directly. It talks to a
``StateProbe`` (one method per observable fact or addressable control) and
the ``UIControl`` handles the probe returns. ``AppStateProbe`` is the
Playwright-backed implementation; tests inject in-memory fakes.
"""

from __future__ import annotations

import dataclasses
import threading
import time
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class UIControl(Protocol):
    """A located element. Playwright's ``Locator`` satisfies this."""

    def click(self, *, force: bool = False, timeout: float | None = None) -> None: ...

    def fill(self, value: str, *, timeout: float | None = None) -> None: ...

    def wait_for(self, *, state: str = "visible", timeout: float | None = None) -> None: ...

    def count(self) -> int: ...

    def is_visible(self) -> bool: ...

    def is_disabled(self) -> bool: ...

    def text_content(self) -> str | None: ...

    def get_attribute(self, name: str) -> str | None: ...

    def scroll_into_view_if_needed(self, *, timeout: float | None = None) -> None: ...

    def evaluate(self, expression: str, arg: Any = None) -> Any: ...


@runtime_checkable
class StateProbe(Protocol):
    """Observable facts and addressable controls of the game UI."""

    # -- Page / session ------------------------------------------------------

    def goto(self, route: str) -> None: ...

    def current_url(self) -> str: ...

    def wait_for_route(self, route: str, timeout_ms: int) -> bool: ...

    def has_session_token(self) -> bool: ...

    def pause(self, ms: int) -> None: ...

    def screenshot(self, path: str) -> None: ...

    def wait_visible(self, control: UIControl, timeout_ms: int) -> bool: ...

    def wait_hidden(self, control: UIControl, timeout_ms: int) -> bool: ...

    # -- Facts ---------------------------------------------------------------

    def is_on_home(self) -> bool: ...

    def is_tab_active(self, tab: str) -> bool: ...

    def is_mode_active(self, mode: str) -> bool: ...

    def is_modal_open(self, anchor: str) -> bool: ...

    def current_toggle_label(self) -> str: ...

    def asset_field_text(self, label: str) -> str | None: ...

    def has_positions(self) -> bool: ...

    def margin_text(self) -> str | None: ...

    def contract_cards(self) -> list[list[str]]: ...

    def countdown_text(self) -> str | None: ...

    def game_day_text(self) -> str | None: ...

    def stock_price_text(self) -> str | None: ...

    def dialogue_text(self) -> str: ...

    def current_avatar_src(self) -> str | None: ...

    def employee_switch_checked(self) -> bool: ...

    def quiz_overlay_visible(self) -> bool: ...

    def minority_overlay_visible(self) -> bool: ...

    def result_text(self) -> str | None: ...

    # -- Controls ------------------------------------------------------------

    def button(self, label: str) -> UIControl: ...

    def signup_dialog(self) -> UIControl: ...

    def signup_field(self, field: str) -> UIControl: ...

    def login_field(self, field: str) -> UIControl: ...

    def user_menu(self) -> UIControl: ...

    def avatar_cell(self, index: int) -> UIControl: ...

    def employee_switch(self) -> UIControl: ...

    def tab(self, tab: str) -> UIControl: ...

    def mode(self, mode: str) -> UIControl: ...

    def quantity_input(self) -> UIControl: ...

    def numeric_input(self, label: str, position: int) -> UIControl: ...

    def trade_button(self) -> UIControl: ...

    def confirm_dialog(self) -> UIControl: ...

    def confirm_button(self) -> UIControl: ...

    def toast(self, text: str) -> UIControl: ...

    def asset_anchor(self) -> UIControl: ...

    def countdown_timer(self) -> UIControl: ...

    def loan_entry(self) -> UIControl: ...

    def loan_title(self) -> UIControl: ...

    def loan_close(self) -> UIControl: ...

    def loan_toggle(self) -> UIControl: ...

    def loan_amount_input(self) -> UIControl: ...

    def loan_submit(self) -> UIControl: ...

    def merchant_avatar(self) -> UIControl: ...

    def quiz_title(self) -> UIControl: ...

    def quiz_countdown(self) -> UIControl: ...

    def answer_option(self, option: str) -> UIControl: ...

    def any_answer_option(self) -> UIControl: ...

    def correct_answer_marker(self) -> UIControl: ...

    def minority_title(self) -> UIControl: ...

    def minority_result_marker(self) -> UIControl: ...

    def minority_amount_input(self) -> UIControl: ...

    def minority_submit(self) -> UIControl: ...

    def open_minigame(self) -> UIControl: ...

    def collapse_overlay(self) -> UIControl: ...


@dataclasses.dataclass
class CancelToken:
    """Cooperative cancellation: an event plus an optional wall-clock deadline.

    Blocking waits poll ``cancelled`` between bounded slices, so setting the
    event (or passing the deadline) ends them without interrupting an
    in-flight UI call.
    """

    deadline: float | None = None  # time.monotonic() value
    parent: CancelToken | None = None
    _event: threading.Event = dataclasses.field(default_factory=threading.Event, repr=False)

    @classmethod
    def with_budget(cls, seconds: float, parent: CancelToken | None = None) -> CancelToken:
        return cls(deadline=time.monotonic() + seconds, parent=parent)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self.parent is not None and self.parent.cancelled:
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> float | None:
        """Seconds until the deadline, or None when unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns False if cancelled meanwhile."""
        if seconds > 0:
            self._event.wait(seconds)
        return not self.cancelled
