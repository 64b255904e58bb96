import threading
from typing import Optional
from omr_grading.utils import app_logger


class RoundContext:
    """
    Holds the ambient "current round" name.

    Caches read `current_round` on every access and compare it with the round
    their data was built for; switching rounds here is the only thing that
    invalidates them.
    """

    NO_ROUND = ""

    def __init__(self, current_round: Optional[str] = None):
        self._current_round = (current_round or self.NO_ROUND).strip()
        self._lock = threading.Lock()
        app_logger.debug(f"RoundContext initialized (round='{self._current_round}').")

    @property
    def current_round(self) -> str:
        with self._lock:
            return self._current_round

    def switch_round(self, round_name: Optional[str]) -> bool:
        """
        Make `round_name` the active round.

        Returns:
            bool: True if the round actually changed.
        """
        new_round = (round_name or self.NO_ROUND).strip()
        with self._lock:
            old_round = self._current_round
            if old_round == new_round:
                return False
            self._current_round = new_round

        app_logger.info(f"Round switched: '{old_round}' -> '{new_round}'")
        return True

