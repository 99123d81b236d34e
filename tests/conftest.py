"""Shared fixtures for SprintStress unit tests.

The action library is exercised against ``FakeProbe``: an in-memory model of
the game page whose controls count clicks and fills, so tests can assert
exactly which UI operations an action performed.
"""

from __future__ import annotations

import json
import random
from pathlib import Path
from typing import Any, Callable

import pytest
import yaml

from sprintstress.config import StressConfig
from sprintstress.engine import probe as ui
from sprintstress.engine.game_actions import GameActions
from sprintstress.engine.state_parser import parse_currency


# ---------------------------------------------------------------------------
# Fakes: UI controls and the page probe
# ---------------------------------------------------------------------------

class FakeControl:
    """A located element that records what was done to it."""

    def __init__(self, name: str, visible: bool = True, disabled: bool = False, text: str | None = None) -> None:
        self.name = name
        self.visible = visible
        self.disabled = disabled
        self.text = text
        self.attrs: dict[str, str] = {}
        self.on_click: Callable[[], None] | None = None
        self.fail_click = False
        self.clicks = 0
        self.forced_clicks = 0
        self.fills: list[str] = []
        self.evaluations: list[Any] = []

    def click(self, *, force: bool = False, timeout: float | None = None) -> None:
        if self.fail_click:
            raise TimeoutError(f"{self.name}: click timed out")
        self.clicks += 1
        if force:
            self.forced_clicks += 1
        if self.on_click is not None:
            self.on_click()

    def fill(self, value: str, *, timeout: float | None = None) -> None:
        self.fills.append(value)

    def wait_for(self, *, state: str = "visible", timeout: float | None = None) -> None:
        if state == "visible" and not self.visible:
            raise TimeoutError(f"{self.name}: not visible")
        if state == "hidden" and self.visible:
            raise TimeoutError(f"{self.name}: still visible")

    def count(self) -> int:
        return 1

    def is_visible(self) -> bool:
        return self.visible

    def is_disabled(self) -> bool:
        return self.disabled

    def text_content(self) -> str | None:
        return self.text

    def get_attribute(self, name: str) -> str | None:
        return self.attrs.get(name)

    def scroll_into_view_if_needed(self, *, timeout: float | None = None) -> None:
        pass

    def evaluate(self, expression: str, arg: Any = None) -> Any:
        self.evaluations.append(arg)
        return None


# Controls that start hidden; everything else starts visible.
_HIDDEN_BY_DEFAULT = {
    "signup_dialog",
    "confirm_dialog",
    "loan_title",
    "quiz_title",
    "quiz_countdown",
    "correct_answer_marker",
    "minority_title",
    "minority_result_marker",
    "collapse_overlay",
    "open_minigame",
}

BASE_URL = "https://game.test"


class FakeProbe:
    """In-memory game page implementing the StateProbe protocol."""

    def __init__(self) -> None:
        self.url = BASE_URL + "/"
        self.active_tab = ui.SPOT_TAB
        self.active_mode = ui.BUY_MODE
        self.open_anchors: set[str] = set()
        self.toggle_label = ui.BORROW_LABEL
        self.session_token = True
        self.accept_login = True
        self.accept_register = True
        self.dialog_dismisses = True
        self.employee = False
        self.assets: dict[str, str] = {
            "總資產": "$1,000.00",
            "現金": "$1,000.00",
            "股票現值": "$0.00",
            "持有股數": "0 張",
            "負債": "$0.00",
        }
        self.cards: list[list[str]] = []
        self.margin: str | None = None
        self.countdown_samples: list[str] = ["05:00", "04:58"]
        self.game_day: str | None = "第 1 天"
        self.stock_price: str | None = "$100.00"
        self.dialogues: list[str] = [""]
        self.avatar_src: str | None = None
        self.result: str | None = None
        # Confirmed dialogs apply their effect to the balances above
        self.cancel_clears = True
        self.pending: tuple | None = None

        self.controls: dict[str, FakeControl] = {}
        self.gotos: list[str] = []
        self.pauses: list[int] = []
        self.screenshots: list[str] = []
        self.on_pause: Callable[[int], None] | None = None

    def control(self, key: str) -> FakeControl:
        if key not in self.controls:
            hidden = key in _HIDDEN_BY_DEFAULT or key.startswith("toast:")
            self.controls[key] = FakeControl(key, visible=not hidden)
        return self.controls[key]

    def clicks(self, key: str) -> int:
        return self.controls[key].clicks if key in self.controls else 0

    def total_clicks(self) -> int:
        return sum(c.clicks for c in self.controls.values())

    # -- Page / session ------------------------------------------------------

    def goto(self, route: str) -> None:
        self.gotos.append(route)
        self.url = BASE_URL + route

    def current_url(self) -> str:
        return self.url

    def wait_for_route(self, route: str, timeout_ms: int) -> bool:
        return self.url.split("#")[0].endswith(route)

    def has_session_token(self) -> bool:
        return self.session_token

    def pause(self, ms: int) -> None:
        self.pauses.append(ms)
        if self.on_pause is not None:
            self.on_pause(ms)

    def screenshot(self, path: str) -> None:
        self.screenshots.append(path)
        Path(path).write_bytes(b"png")

    def wait_visible(self, control: FakeControl, timeout_ms: int) -> bool:
        return control.visible

    def wait_hidden(self, control: FakeControl, timeout_ms: int) -> bool:
        return not control.visible

    # -- Facts ---------------------------------------------------------------

    def is_on_home(self) -> bool:
        return self.url.split("#")[0].endswith(ui.ROUTE_HOME)

    def is_tab_active(self, tab: str) -> bool:
        return self.active_tab == tab

    def is_mode_active(self, mode: str) -> bool:
        return self.active_mode == mode

    def is_modal_open(self, anchor: str) -> bool:
        return anchor in self.open_anchors

    def current_toggle_label(self) -> str:
        return self.toggle_label

    def asset_field_text(self, label: str) -> str | None:
        return self.assets.get(label)

    def has_positions(self) -> bool:
        return bool(self.cards)

    def margin_text(self) -> str | None:
        return self.margin

    def contract_cards(self) -> list[list[str]]:
        return self.cards

    def countdown_text(self) -> str | None:
        if len(self.countdown_samples) > 1:
            return self.countdown_samples.pop(0)
        return self.countdown_samples[0] if self.countdown_samples else None

    def game_day_text(self) -> str | None:
        return self.game_day

    def stock_price_text(self) -> str | None:
        return self.stock_price

    def dialogue_text(self) -> str:
        if len(self.dialogues) > 1:
            return self.dialogues.pop(0)
        return self.dialogues[0]

    def current_avatar_src(self) -> str | None:
        return self.avatar_src

    def employee_switch_checked(self) -> bool:
        return self.employee

    def quiz_overlay_visible(self) -> bool:
        return self.control("quiz_title").visible

    def minority_overlay_visible(self) -> bool:
        return self.control("minority_title").visible

    def result_text(self) -> str | None:
        return self.result

    # -- Controls ------------------------------------------------------------

    def _show(self, key: str, visible: bool = True) -> None:
        self.control(key).visible = visible

    def _press(self, label: str) -> None:
        if label == ui.SIGNUP_BUTTON:
            self._show("signup_dialog")
        elif label == ui.SIGNUP_SUBMIT and self.accept_register:
            self._show(f"toast:{ui.REGISTER_TOAST}")
        elif label == ui.LOGIN_BUTTON and self.accept_login:
            self.url = BASE_URL + ui.ROUTE_HOME
        elif label == ui.AVATAR_MENU_ITEM:
            self.open_anchors.add(ui.ANCHOR_AVATAR)
        elif label == ui.SAVE_BUTTON:
            self.open_anchors.discard(ui.ANCHOR_AVATAR)
        elif label == ui.CANCEL_ALL_BUTTON:
            self._open_dialog(("cancel_all",))

    def _open_dialog(self, effect: tuple | None = None) -> None:
        self.pending = effect
        self._show("confirm_dialog")

    def _confirm(self) -> None:
        if self.dialog_dismisses:
            self._show("confirm_dialog", False)
            if self.pending is not None:
                self._apply(*self.pending)
            self.pending = None

    # -- Ledger --------------------------------------------------------------

    def balance(self, label: str) -> float:
        return parse_currency(self.assets.get(label))

    def _apply(self, kind: str, *args: Any) -> None:
        cash = self.balance("現金")
        count = self.balance("持有股數")
        debt = self.balance("負債")
        price = parse_currency(self.stock_price)
        if kind == "spot":
            mode, lots = args
            sign = 1 if mode == ui.BUY_MODE else -1
            count += sign * lots
            cash -= sign * lots * price
        elif kind == "contract":
            mode, leverage, lots = args
            self.cards.append([f"{mode} {leverage}倍", f"{lots}張"])
            self.margin = f"${self.balance_margin() + price * lots:,.2f}"
        elif kind == "cancel_all":
            if self.cancel_clears:
                self.cards = []
                self.margin = None
        elif kind == "loan":
            label, amount = args
            sign = 1 if label == ui.BORROW_LABEL else -1
            cash += sign * amount
            debt += sign * amount
        stock_value = count * price
        self.assets = {
            "總資產": f"${cash + stock_value - debt:,.2f}",
            "現金": f"${cash:,.2f}",
            "股票現值": f"${stock_value:,.2f}",
            "持有股數": f"{count:g} 張",
            "負債": f"${debt:,.2f}",
        }

    def balance_margin(self) -> float:
        return parse_currency(self.margin)

    def _trade_effect(self) -> tuple:
        if self.active_tab == ui.CONTRACT_TAB:
            leverage = self.control(f"numeric:{ui.LEVERAGE_LABEL}").fills[-1]
            lots = int(self.control(f"numeric:{ui.LOTS_LABEL}").fills[-1])
            return ("contract", self.active_mode, leverage, lots)
        return ("spot", self.active_mode, int(self.control("quantity_input").fills[-1]))

    def _loan_effect(self) -> tuple:
        return ("loan", self.toggle_label, float(self.control("loan_amount_input").evaluations[-1]))

    def button(self, label: str) -> FakeControl:
        c = self.control(f"button:{label}")
        c.on_click = lambda: self._press(label)
        return c

    def signup_dialog(self) -> FakeControl:
        return self.control("signup_dialog")

    def signup_field(self, field: str) -> FakeControl:
        return self.control(f"signup:{field}")

    def login_field(self, field: str) -> FakeControl:
        return self.control(f"login:{field}")

    def user_menu(self) -> FakeControl:
        return self.control("user_menu")

    def avatar_cell(self, index: int) -> FakeControl:
        return self.control(f"avatar:{index}")

    def employee_switch(self) -> FakeControl:
        c = self.control("employee_switch")
        c.on_click = lambda: setattr(self, "employee", not self.employee)
        return c

    def tab(self, tab: str) -> FakeControl:
        c = self.control(f"tab:{tab}")
        c.on_click = lambda: setattr(self, "active_tab", tab)
        return c

    def mode(self, mode: str) -> FakeControl:
        c = self.control(f"mode:{mode}")
        c.on_click = lambda: setattr(self, "active_mode", mode)
        return c

    def quantity_input(self) -> FakeControl:
        return self.control("quantity_input")

    def numeric_input(self, label: str, position: int) -> FakeControl:
        return self.control(f"numeric:{label}")

    def trade_button(self) -> FakeControl:
        c = self.control("trade_button")
        c.on_click = lambda: self._open_dialog(self._trade_effect())
        return c

    def confirm_dialog(self) -> FakeControl:
        return self.control("confirm_dialog")

    def confirm_button(self) -> FakeControl:
        c = self.control("confirm_button")
        c.on_click = self._confirm
        return c

    def toast(self, text: str) -> FakeControl:
        return self.control(f"toast:{text}")

    def asset_anchor(self) -> FakeControl:
        return self.control("asset_anchor")

    def countdown_timer(self) -> FakeControl:
        return self.control("countdown_timer")

    def _open_loan(self) -> None:
        self.open_anchors.add(ui.ANCHOR_LOAN)
        self._show("loan_title")

    def _close_loan(self) -> None:
        self.open_anchors.discard(ui.ANCHOR_LOAN)
        self._show("loan_title", False)

    def loan_entry(self) -> FakeControl:
        c = self.control("loan_entry")
        c.on_click = self._open_loan
        return c

    def loan_title(self) -> FakeControl:
        return self.control("loan_title")

    def loan_close(self) -> FakeControl:
        c = self.control("loan_close")
        c.on_click = self._close_loan
        return c

    def _flip_toggle(self) -> None:
        self.toggle_label = ui.REPAY_LABEL if self.toggle_label == ui.BORROW_LABEL else ui.BORROW_LABEL

    def loan_toggle(self) -> FakeControl:
        c = self.control("loan_toggle")
        c.on_click = self._flip_toggle
        return c

    def loan_amount_input(self) -> FakeControl:
        return self.control("loan_amount_input")

    def loan_submit(self) -> FakeControl:
        c = self.control("loan_submit")
        c.on_click = lambda: self._open_dialog(self._loan_effect())
        return c

    def merchant_avatar(self) -> FakeControl:
        return self.control("merchant_avatar")

    def quiz_title(self) -> FakeControl:
        return self.control("quiz_title")

    def quiz_countdown(self) -> FakeControl:
        return self.control("quiz_countdown")

    def answer_option(self, option: str) -> FakeControl:
        return self.control(f"option:{option}")

    def any_answer_option(self) -> FakeControl:
        return self.control("any_answer_option")

    def correct_answer_marker(self) -> FakeControl:
        return self.control("correct_answer_marker")

    def minority_title(self) -> FakeControl:
        return self.control("minority_title")

    def minority_result_marker(self) -> FakeControl:
        return self.control("minority_result_marker")

    def minority_amount_input(self) -> FakeControl:
        return self.control("minority_amount_input")

    def minority_submit(self) -> FakeControl:
        c = self.control("minority_submit")
        c.on_click = self._open_dialog
        return c

    def open_minigame(self) -> FakeControl:
        c = self.control("open_minigame")
        c.on_click = lambda: self._show("minority_title")
        return c

    def collapse_overlay(self) -> FakeControl:
        return self.control("collapse_overlay")


class ScriptedRandom(random.Random):
    """``random.Random`` whose draws come from fixed scripts."""

    def __init__(self, randoms: list[float] | None = None, ints: list[int] | None = None) -> None:
        super().__init__(0)
        self._randoms = list(randoms or [])
        self._ints = list(ints or [])

    def random(self) -> float:
        return self._randoms.pop(0)

    def randint(self, a: int, b: int) -> int:
        value = self._ints.pop(0)
        assert a <= value <= b, f"scripted {value} outside [{a}, {b}]"
        return value

    def choice(self, seq):
        return seq[0]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def evidence_dir(tmp_path: Path) -> Path:
    path = tmp_path / "evidence"
    path.mkdir()
    return path


@pytest.fixture
def actions(probe: FakeProbe, evidence_dir: Path) -> GameActions:
    return GameActions(probe, "tester", evidence_dir=evidence_dir)


@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """Create a temporary .sprintstress/ project with config and accounts."""
    project_dir = tmp_path / ".sprintstress"
    for sub in ("data", "evidence"):
        (project_dir / sub).mkdir(parents=True)

    config_data = {
        "base_url": "https://game.test",
        "total_users": 2,
        "user_distribution": {"spot": 1, "contract": 1, "loan": 0, "quiz": 0, "minority": 0},
        "settle_seconds": 0,
    }
    (project_dir / "config.yaml").write_text(yaml.dump(config_data, default_flow_style=False), encoding="utf-8")

    users = [
        {"username": "alice01", "password": "Test1234", "registered": True},
        {"username": "bob02", "password": "Test1234", "registered": True},
    ]
    (project_dir / "data" / "users.json").write_text(json.dumps(users), encoding="utf-8")
    return project_dir


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a valid SprintStress config.yaml as a string."""
    return """\
base_url: "https://game.test/"
total_users: 3
user_distribution:
  spot: 2
  quiz: 1
max_concurrency: 2
role_durations:
  spot: 30
settle_seconds: 0.5
test_end_day: 7
headless: false
viewport:
  width: 390
  height: 844
users_file: accounts/users.json
evidence_dir: out
"""


@pytest.fixture
def fast_config(tmp_path: Path) -> StressConfig:
    """Config with no settle delay, rooted in tmp_path."""
    config = StressConfig._from_dict({"settle_seconds": 0}, tmp_path)
    return config
