"""Text-to-value parsing for game state read off the page.

Everything here is pure: the probe hands over raw text, these functions turn
it into typed snapshots. None of them raise on malformed input.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from collections import Counter
from typing import Iterable, Literal

from sprintstress.models import ASSET_TOLERANCE

logger = logging.getLogger("sprintstress.engine.state_parser")

Direction = Literal["LONG", "SHORT"]

# Card grammar: "做多 3倍" on the first line, "2張" on a sibling line
DIRECTION_LABELS: dict[str, Direction] = {"做多": "LONG", "做空": "SHORT"}
_CARD_HEADER_RE = re.compile(r"^\s*(做多|做空)\s*(\d+(?:\.\d+)?)\s*倍")
_CARD_LOTS_RE = re.compile(r"(\d+)\s*張")

_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")
_NUMBER_PREFIX_RE = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")

_GAME_DAY_RE = re.compile(r"第\s*(\d+)\s*天")
_COUNTDOWN_RE = re.compile(r"^\s*\d{1,2}:\d{2}(?::\d{2})?\s*$")
_CORRECT_ANSWER_RE = re.compile(r"正確答案\s*[:：]\s*([A-D])")

# Dialogue heuristic bounds
DIALOGUE_MIN_LEN = 15
DIALOGUE_MAX_LEN = 80
_CHINESE_PUNCTUATION = "，。！？、；：「」…"
DEFAULT_UI_LABELS = ("借款", "還款", "地下錢莊", "利率", "金額", "確認", "取消", "總資產", "現金", "負債")


@dataclasses.dataclass(frozen=True)
class AssetSnapshot:
    """Point-in-time read of a player's balance sheet."""

    total_assets: float
    cash: float
    stock_value: float
    stock_count: float
    debt: float

    @property
    def computed_total(self) -> float:
        return self.cash + self.stock_value - self.debt

    @property
    def identity_gap(self) -> float:
        """Distance between the displayed total and cash + stock - debt."""
        return abs(self.total_assets - self.computed_total)

    def is_consistent(self, tolerance: float = ASSET_TOLERANCE) -> bool:
        return self.identity_gap < tolerance

    def describe(self) -> str:
        return (
            f"總資產=${self.total_assets:.2f} 現金=${self.cash:.2f} "
            f"股票現值=${self.stock_value:.2f} 持股={self.stock_count:g} 負債=${self.debt:.2f}"
        )


@dataclasses.dataclass(frozen=True)
class ContractPosition:
    """One open contract card."""

    direction: Direction
    leverage: float
    lots: int


@dataclasses.dataclass(frozen=True)
class ContractBook:
    """Margin plus the list of open contract positions."""

    margin: float = 0.0
    contracts: tuple[ContractPosition, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.contracts

    def __len__(self) -> int:
        return len(self.contracts)


EMPTY_BOOK = ContractBook()


def parse_currency(text: str | None) -> float:
    """Parse a decorated number such as ``"$1,234.50"`` or ``"12 張"``.

    Every character other than digits, ``.`` and ``-`` is dropped, then the
    leading numeric prefix is read. Empty or unparsable input is 0.
    """
    if not text:
        return 0.0
    cleaned = _NON_NUMERIC_RE.sub("", text)
    match = _NUMBER_PREFIX_RE.match(cleaned)
    if match is None:
        return 0.0
    try:
        return float(match.group(0))
    except ValueError:
        return 0.0


def parse_contract_card(lines: Iterable[str]) -> ContractPosition | None:
    """Parse a position card's text lines; None when the grammar doesn't match."""
    lines = [line.strip() for line in lines if line and line.strip()]
    if not lines:
        return None

    header = _CARD_HEADER_RE.match(lines[0])
    if header is None:
        logger.debug("Skipping card, header does not match: %r", lines[0])
        return None

    lots = None
    for line in lines[1:]:
        lots_match = _CARD_LOTS_RE.search(line)
        if lots_match:
            lots = int(lots_match.group(1))
            break
    if lots is None:
        # Header and lots occasionally render on the same line
        same_line = _CARD_LOTS_RE.search(lines[0][header.end():])
        if same_line:
            lots = int(same_line.group(1))
    if not lots or lots <= 0:
        logger.debug("Skipping card, no lot count: %r", lines)
        return None

    leverage = float(header.group(2))
    if leverage <= 0:
        return None
    return ContractPosition(direction=DIRECTION_LABELS[header.group(1)], leverage=leverage, lots=lots)


def parse_game_day(text: str | None) -> int | None:
    """Extract N from ``"第 N 天"``."""
    if not text:
        return None
    match = _GAME_DAY_RE.search(text)
    return int(match.group(1)) if match else None


def is_countdown_text(text: str | None) -> bool:
    """True for clock-shaped text like ``"04:59"``."""
    return bool(text) and _COUNTDOWN_RE.match(text) is not None


def parse_correct_answer(text: str | None) -> str | None:
    """Extract the option letter from ``"正確答案：B"``."""
    if not text:
        return None
    match = _CORRECT_ANSWER_RE.search(text)
    return match.group(1) if match else None


def looks_like_dialogue(text: str, ui_labels: Iterable[str] = DEFAULT_UI_LABELS) -> bool:
    text = text.strip()
    if not DIALOGUE_MIN_LEN <= len(text) <= DIALOGUE_MAX_LEN:
        return False
    if not any(ch in text for ch in _CHINESE_PUNCTUATION):
        return False
    return not any(label in text for label in ui_labels)


def pick_dialogue_text(texts: Iterable[str], ui_labels: Iterable[str] = DEFAULT_UI_LABELS) -> str:
    """Pick the most repeated dialogue-shaped text block.

    Nested containers repeat the same dialogue text, so frequency is the
    signal. Best-effort: returns "" when nothing qualifies.
    """
    labels = tuple(ui_labels)
    candidates = [t.strip() for t in texts if t and looks_like_dialogue(t, labels)]
    if not candidates:
        return ""
    counts = Counter(candidates)
    best = max(counts.values())
    # Ties resolve to the first block seen in document order
    for text in candidates:
        if counts[text] == best:
            return text
    return ""
