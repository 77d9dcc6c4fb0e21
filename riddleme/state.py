"""
In-memory aggregate of the whole game: riddle log, players and their history.

Repositories load and save a ``GameState`` as one unit; the lifecycle and
scoring components only ever mutate this object.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

ATTEMPTING = "attempting"
SOLVED = "solved"
SKIPPED = "skipped"
TERMINAL_STATUSES = (SOLVED, SKIPPED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> datetime:
    # sqlite hands back naive datetimes; treat them as UTC
    if value is None:
        return datetime.fromtimestamp(0, timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class Riddle:
    id: int
    question: str
    answer: str
    hints: List[str]
    created_at: datetime = field(default_factory=utcnow)

    def public(self) -> dict:
        """Client-facing view. Never contains the answer."""
        return {"id": self.id, "question": self.question, "hints": list(self.hints)}


@dataclass
class HistoryEntry:
    riddle_id: int
    timestamp: datetime = field(default_factory=utcnow)
    hints_used: int = 0
    points_awarded: int = 0
    attempts: int = 0
    status: str = ATTEMPTING

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class Player:
    username: str
    points: int = 0
    last_played: datetime = field(default_factory=utcnow)
    history: Dict[int, HistoryEntry] = field(default_factory=dict)

    def entry_for(self, riddle_id: int) -> HistoryEntry:
        entry = self.history.get(riddle_id)
        if entry is None:
            entry = HistoryEntry(riddle_id=riddle_id)
            self.history[riddle_id] = entry
        return entry

    def touch(self) -> None:
        self.last_played = utcnow()


@dataclass
class GameState:
    riddles: List[Riddle] = field(default_factory=list)
    players: Dict[str, Player] = field(default_factory=dict)
    current_riddle_id: Optional[int] = None
    riddle_counter: int = 1

    def riddle(self, riddle_id: int) -> Optional[Riddle]:
        for r in self.riddles:
            if r.id == riddle_id:
                return r
        return None

    def current_riddle(self) -> Optional[Riddle]:
        if self.current_riddle_id is None:
            return None
        return self.riddle(self.current_riddle_id)

    def is_current(self, riddle_id: int) -> bool:
        return self.current_riddle_id is not None and self.current_riddle_id == riddle_id

    def recent_answers(self, limit: int = 10) -> List[str]:
        if limit <= 0:
            return []
        return [r.answer for r in self.riddles[-limit:]]

    def get_or_create_player(self, username: str) -> Player:
        player = self.players.get(username)
        if player is None:
            player = Player(username=username)
            self.players[username] = player
        return player

    def add_riddle(self, question: str, answer: str, hints: List[str]) -> Riddle:
        """Append a riddle to the log under the next id and make it current."""
        self.seed_counter()
        riddle = Riddle(id=self.riddle_counter, question=question, answer=answer, hints=list(hints))
        self.riddles.append(riddle)
        self.riddle_counter += 1
        self.current_riddle_id = riddle.id
        return riddle

    def seed_counter(self) -> None:
        highest = max((r.id for r in self.riddles), default=0)
        if self.riddle_counter <= highest:
            self.riddle_counter = highest + 1
