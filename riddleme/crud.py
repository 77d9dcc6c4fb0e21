"""
Persistence for the game aggregate.

Both repositories expose the same two calls, ``load()`` and ``save(state)``.
The lifecycle and scoring components receive one of them and never touch a
database session directly.
"""
import copy
import json
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, select

from . import models
from .errors import PersistenceError
from .logging_utils import get_logger
from .state import GameState, HistoryEntry, Player, Riddle, as_utc

logger = get_logger("riddleme.crud")

META_ID = 1


class StateRepository:
    def load(self) -> GameState:
        raise NotImplementedError

    def save(self, state: GameState) -> None:
        raise NotImplementedError


class MemoryStateRepository(StateRepository):
    """Keeps the aggregate in process memory; handy for tests and demos."""

    def __init__(self, state: Optional[GameState] = None):
        self._state = copy.deepcopy(state) if state is not None else GameState()

    def load(self) -> GameState:
        # hand out a copy so unsaved mutations never leak into the store
        state = copy.deepcopy(self._state)
        state.seed_counter()
        return state

    def save(self, state: GameState) -> None:
        self._state = copy.deepcopy(state)


def make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    if url.startswith("sqlite"):
        return create_engine(url, echo=False, connect_args=connect_args)
    return create_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_recycle=1800,
    )


class SQLStateRepository(StateRepository):
    """Stores the aggregate in SQL tables and writes it back in one transaction."""

    def __init__(self, engine):
        self.engine = engine

    def create_tables(self) -> None:
        SQLModel.metadata.create_all(self.engine)

    def load(self) -> GameState:
        try:
            with Session(self.engine) as session:
                riddle_rows = session.exec(select(models.Riddle).order_by(models.Riddle.id)).all()
                player_rows = session.exec(select(models.Player)).all()
                entry_rows = session.exec(select(models.HistoryEntry)).all()
                meta = session.get(models.GameMeta, META_ID)
        except SQLAlchemyError as exc:
            logger.exception("state_load_failed", extra={"error": str(exc)})
            raise PersistenceError() from exc

        state = GameState()
        for row in riddle_rows:
            state.riddles.append(Riddle(
                id=row.id,
                question=row.question,
                answer=row.answer,
                hints=json.loads(row.hints_json or "[]"),
                created_at=as_utc(row.created_at),
            ))
        for row in player_rows:
            state.players[row.username] = Player(
                username=row.username,
                points=row.points,
                last_played=as_utc(row.last_played),
            )
        for row in entry_rows:
            player = state.players.get(row.username)
            if player is None:
                continue
            player.history[row.riddle_id] = HistoryEntry(
                riddle_id=row.riddle_id,
                timestamp=as_utc(row.timestamp),
                hints_used=row.hints_used,
                points_awarded=row.points_awarded,
                attempts=row.attempts,
                status=row.status,
            )
        if meta is not None:
            state.current_riddle_id = meta.current_riddle_id
            state.riddle_counter = meta.riddle_counter
        state.seed_counter()
        return state

    def save(self, state: GameState) -> None:
        try:
            with Session(self.engine) as session:
                for r in state.riddles:
                    session.merge(models.Riddle(
                        id=r.id,
                        question=r.question,
                        answer=r.answer,
                        hints_json=json.dumps(list(r.hints)),
                        created_at=r.created_at,
                    ))
                for p in state.players.values():
                    session.merge(models.Player(
                        username=p.username,
                        points=p.points,
                        last_played=p.last_played,
                    ))
                # flush parents before history rows reference them
                session.flush()
                for p in state.players.values():
                    for e in p.history.values():
                        session.merge(models.HistoryEntry(
                            username=p.username,
                            riddle_id=e.riddle_id,
                            timestamp=e.timestamp,
                            hints_used=e.hints_used,
                            points_awarded=e.points_awarded,
                            attempts=e.attempts,
                            status=e.status,
                        ))
                session.merge(models.GameMeta(
                    id=META_ID,
                    current_riddle_id=state.current_riddle_id,
                    riddle_counter=state.riddle_counter,
                ))
                session.commit()
        except SQLAlchemyError as exc:
            logger.exception("state_save_failed", extra={"error": str(exc)})
            raise PersistenceError() from exc
