from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime


class Riddle(SQLModel, table=True):
    id: int = Field(primary_key=True)
    question: str
    answer: str  # normalized, never sent to clients
    hints_json: str = "[]"
    created_at: Optional[datetime] = None


class Player(SQLModel, table=True):
    username: str = Field(primary_key=True)
    points: int = 0
    last_played: Optional[datetime] = None


class HistoryEntry(SQLModel, table=True):
    username: str = Field(primary_key=True, foreign_key="player.username")
    riddle_id: int = Field(primary_key=True, foreign_key="riddle.id")
    timestamp: Optional[datetime] = None
    hints_used: int = 0
    points_awarded: int = 0
    attempts: int = 0
    status: str = "attempting"


class GameMeta(SQLModel, table=True):
    # single row holding the pointer to the active riddle and the id counter
    id: int = Field(default=1, primary_key=True)
    current_riddle_id: Optional[int] = None
    riddle_counter: int = 1
