"""
Scoring and leaderboard.

Per (player, riddle) the history entry moves Unseen -> attempting ->
solved | skipped. Solved and skipped are terminal: later submissions for the
same pair change nothing, so points are awarded at most once.
"""
from dataclasses import dataclass
from typing import List, Optional

from .cache import invalidate_leaderboard_cache
from .crud import StateRepository
from .errors import NotFound, ValidationError
from .game import MAX_HINTS, answers_match, max_awardable
from .lifecycle import KEEP, ROTATE, SAVE, RiddleLifecycle
from .logging_utils import get_logger
from .state import SKIPPED, SOLVED, Player, utcnow

logger = get_logger("riddleme.scoring")

WRONG_ANSWER_MESSAGE = "Wrong answer, try again!"


@dataclass
class AnswerOutcome:
    correct: bool
    message: str
    points: int = 0
    total_points: int = 0
    attempts: int = 0
    rotated: bool = False
    duplicate: bool = False

    def as_response(self) -> dict:
        if not self.correct:
            return {"correct": False, "message": self.message}
        return {
            "correct": True,
            "points": self.points,
            "totalPoints": self.total_points,
            "message": self.message,
        }


def _clean_username(username) -> str:
    uname = str(username or "").strip()
    if not uname:
        raise ValidationError("Username is required")
    return uname


def _coerce_int(value, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")


def _require_riddle_id(riddle_id) -> int:
    if riddle_id is None or riddle_id == "":
        raise ValidationError("riddleId is required")
    return _coerce_int(riddle_id, "riddleId")


def rank_players(players: List[Player]) -> List[Player]:
    # points desc, most recent activity desc, username for a stable order
    return sorted(players, key=lambda p: (-p.points, -p.last_played.timestamp(), p.username))


class ScoringEngine:
    def __init__(self, repository: StateRepository, lifecycle: RiddleLifecycle, validate_points: bool = False):
        self.repository = repository
        self.lifecycle = lifecycle
        self.validate_points = validate_points

    def submit_answer(self, username, riddle_id, raw_answer, hints_used: int = 0,
                      proposed_points: Optional[int] = None) -> AnswerOutcome:
        uname = _clean_username(username)
        if not str(raw_answer or "").strip():
            raise ValidationError("Answer is required")
        rid = _require_riddle_id(riddle_id)
        hints_used = _coerce_int(hints_used or 0, "hintsUsed")
        if hints_used < 0 or hints_used > MAX_HINTS:
            raise ValidationError(f"hintsUsed must be between 0 and {MAX_HINTS}")
        if proposed_points is not None:
            proposed_points = _coerce_int(proposed_points, "currentPoints")

        def mutate(state):
            riddle = state.riddle(rid)
            if riddle is None:
                raise NotFound("Riddle not found")

            correct = answers_match(raw_answer, riddle.answer)
            player = state.players.get(uname)
            entry = player.history.get(rid) if player else None
            if entry is not None and entry.terminal:
                if not correct:
                    return AnswerOutcome(correct=False, message=WRONG_ANSWER_MESSAGE), KEEP
                return self._already_recorded(player, entry.status), KEEP

            player = state.get_or_create_player(uname)
            entry = player.entry_for(rid)
            entry.hints_used = max(entry.hints_used, hints_used)
            entry.timestamp = utcnow()
            player.touch()

            if not correct:
                entry.attempts += 1
                return AnswerOutcome(correct=False, message=WRONG_ANSWER_MESSAGE, attempts=entry.attempts), SAVE

            awarded = self._award(entry.hints_used, entry.attempts, proposed_points)
            entry.status = SOLVED
            entry.points_awarded = awarded
            player.points += awarded
            outcome = AnswerOutcome(
                correct=True,
                message=f"Correct! You earned {awarded} points!",
                points=awarded,
                total_points=player.points,
                attempts=entry.attempts,
                rotated=state.is_current(rid),
            )
            return outcome, (ROTATE if outcome.rotated else SAVE)

        outcome, _ = self.lifecycle.apply(mutate, after_save=invalidate_leaderboard_cache)
        if not outcome.correct:
            if outcome.attempts:
                logger.info("answer_wrong", extra={"username": uname, "riddle_id": rid, "attempts": outcome.attempts})
        elif not outcome.duplicate:
            logger.info("answer_correct", extra={"username": uname, "riddle_id": rid, "points": outcome.points})
        return outcome

    def skip(self, username, riddle_id) -> dict:
        uname = _clean_username(username)
        rid = _require_riddle_id(riddle_id)

        def mutate(state):
            if state.riddle(rid) is None:
                raise NotFound("Riddle not found")

            player = state.get_or_create_player(uname)
            entry = player.entry_for(rid)
            if not entry.terminal:
                entry.status = SKIPPED
                entry.points_awarded = 0
                entry.timestamp = utcnow()
            player.touch()

            current = state.current_riddle()
            rotate = current is None or current.id == rid
            return (current, entry.attempts), (ROTATE if rotate else SAVE)

        (current, attempts), new = self.lifecycle.apply(mutate, after_save=invalidate_leaderboard_cache)
        riddle = new or current
        logger.info("riddle_skipped", extra={"username": uname, "riddle_id": rid, "attempts": attempts})
        return {"message": "Riddle skipped, here is a new one", "riddle": riddle.public()}

    def get_leaderboard(self, limit: int = 10) -> List[dict]:
        if limit < 1:
            raise ValidationError("limit must be positive")
        state = self.repository.load()
        ranked = rank_players(list(state.players.values()))
        return [{"username": p.username, "points": p.points} for p in ranked[:limit]]

    def player_summary(self, username) -> dict:
        uname = _clean_username(username)
        player = self.repository.load().players.get(uname)
        if player is None:
            raise NotFound("Player not found")
        entries = sorted(player.history.values(), key=lambda e: e.riddle_id)
        return {
            "username": player.username,
            "points": player.points,
            "solved": sum(1 for e in entries if e.status == SOLVED),
            "skipped": sum(1 for e in entries if e.status == SKIPPED),
            "wrongAttempts": sum(e.attempts for e in entries),
            "lastPlayed": player.last_played.isoformat(),
            "history": [
                {
                    "riddleId": e.riddle_id,
                    "status": e.status,
                    "pointsAwarded": e.points_awarded,
                    "hintsUsed": e.hints_used,
                    "attempts": e.attempts,
                    "timestamp": e.timestamp.isoformat(),
                }
                for e in entries
            ],
        }

    def _award(self, hints_used: int, wrong_attempts: int, proposed_points: Optional[int]) -> int:
        ceiling = max_awardable(hints_used, wrong_attempts)
        if proposed_points is None:
            return ceiling
        points = max(0, proposed_points)
        if self.validate_points and points > ceiling:
            logger.warning("points_capped", extra={"points": points, "attempts": wrong_attempts, "hints_used": hints_used})
            points = ceiling
        return points

    def _already_recorded(self, player: Player, status: str) -> AnswerOutcome:
        if status == SOLVED:
            message = "You already solved this riddle."
        else:
            message = "This riddle was already skipped."
        return AnswerOutcome(correct=True, message=message, points=0, total_points=player.points, duplicate=True)
