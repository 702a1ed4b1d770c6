from __future__ import annotations

from typing import Optional

from loguru import logger

from .states import TurnPhase


class TurnGovernor:
    """Tracks whether the human holds the floor or an AI window is open.

    AIWindow(0) is equivalent to the human's turn; the window closes exactly when
    the remaining count reaches zero or ``force_human_turn`` is called.
    """

    def __init__(self) -> None:
        self._phase = TurnPhase.HUMAN_TURN
        self._remaining = 0

    @property
    def phase(self) -> TurnPhase:
        return self._phase

    @property
    def remaining(self) -> int:
        return self._remaining

    def begin_human_input(self, budget: int) -> None:
        self._open(budget)

    def open_window(self, turns: Optional[int]) -> None:
        self._open(turns or 0)

    def _open(self, turns: int) -> None:
        self._remaining = max(0, int(turns))
        self._phase = TurnPhase.AI_WINDOW
        logger.debug(f"turn_window_open | remaining={self._remaining}")

    def complete_ai_turn(self) -> None:
        if self._remaining > 0:
            self._remaining -= 1
        if self._remaining <= 0:
            self._phase = TurnPhase.HUMAN_TURN
        logger.debug(f"turn_ai_complete | remaining={self._remaining} phase={self._phase.value}")

    def force_human_turn(self) -> None:
        self._phase = TurnPhase.HUMAN_TURN
        self._remaining = 0
        logger.debug("turn_forced_human")

    def is_human_turn(self) -> bool:
        return self._phase is TurnPhase.HUMAN_TURN or self._remaining <= 0

    def has_ai_turn_available(self) -> bool:
        return not self.is_human_turn()
