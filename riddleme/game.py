from dataclasses import dataclass

from .errors import HintOrderError


BASE_POINTS = 25
MAX_HINTS = 3
WRONG_ATTEMPT_PENALTY = 5
# score ceiling after revealing k hints
HINT_CEILINGS = {0: BASE_POINTS, 1: 15, 2: 10, 3: 5}


def normalize_answer(text) -> str:
    return str(text or "").strip().lower()


def answers_match(submitted, expected) -> bool:
    # exact comparison after trim + lowercase, no fuzzy matching
    return normalize_answer(submitted) == normalize_answer(expected)


def hint_ceiling(hints_used: int) -> int:
    if hints_used < 0 or hints_used > MAX_HINTS:
        raise HintOrderError(f"hintsUsed must be between 0 and {MAX_HINTS}")
    return HINT_CEILINGS[hints_used]


def max_awardable(hints_used: int, wrong_attempts: int) -> int:
    """Highest score still obtainable for a riddle.

    The hint ceiling is applied first, then 5 points per wrong attempt are
    taken off, floored at 0.
    """
    return max(0, hint_ceiling(hints_used) - WRONG_ATTEMPT_PENALTY * max(0, wrong_attempts))


@dataclass
class RiddleAttempt:
    """Per-riddle state held by the client while a player works on a riddle."""
    hints_used: int = 0
    wrong_attempts: int = 0
    current_points: int = BASE_POINTS

    def reveal_hint(self, k: int) -> int:
        if k > MAX_HINTS or k != self.hints_used + 1:
            raise HintOrderError(f"hint {k} cannot be revealed after hint {self.hints_used}")
        self.hints_used = k
        self.current_points = max_awardable(self.hints_used, self.wrong_attempts)
        return self.current_points

    def record_wrong(self) -> int:
        self.wrong_attempts += 1
        self.current_points = max(0, self.current_points - WRONG_ATTEMPT_PENALTY)
        return self.current_points

    @property
    def exhausted(self) -> bool:
        # at zero the client has to skip the riddle
        return self.current_points <= 0
