from sqlmodel import Session, select

import pytest

from riddleme import models
from riddleme.crud import MemoryStateRepository, SQLStateRepository, make_engine
from riddleme.errors import PersistenceError
from riddleme.migrations import Migration, run_migrations
from riddleme.state import SOLVED, GameState


def setup_repo(tmp_path, name='crud.db'):
    engine = make_engine(f'sqlite:///{tmp_path / name}')
    repo = SQLStateRepository(engine)
    repo.create_tables()
    return repo


def sample_state():
    s = GameState()
    s.add_riddle("What has hands but cannot clap?", "clock", ["Tells something", "On the wall", "Has numbers"])
    s.add_riddle("What gets wet while drying?", "towel", ["Bathroom item", "Made of cloth", "Absorbs water"])
    alice = s.get_or_create_player("alice")
    entry = alice.entry_for(1)
    entry.status = SOLVED
    entry.points_awarded = 15
    entry.hints_used = 1
    alice.points = 15
    bob = s.get_or_create_player("bob")
    bob.entry_for(2).attempts = 3
    return s


def test_empty_database_loads_empty_state(tmp_path):
    repo = setup_repo(tmp_path)
    state = repo.load()
    assert state.riddles == [] and state.players == {}
    assert state.current_riddle_id is None
    assert state.riddle_counter == 1


def test_round_trip(tmp_path):
    repo = setup_repo(tmp_path)
    repo.save(sample_state())
    state = repo.load()
    assert [r.id for r in state.riddles] == [1, 2]
    assert state.riddles[0].hints == ["Tells something", "On the wall", "Has numbers"]
    assert state.current_riddle_id == 2
    assert state.riddle_counter == 3
    alice = state.players["alice"]
    assert alice.points == 15
    assert alice.history[1].status == SOLVED and alice.history[1].hints_used == 1
    assert state.players["bob"].history[2].attempts == 3
    assert alice.last_played.tzinfo is not None


def test_save_updates_existing_rows(tmp_path):
    repo = setup_repo(tmp_path)
    repo.save(sample_state())
    state = repo.load()
    state.players["bob"].history[2].attempts += 1
    state.players["bob"].points = 7
    state.add_riddle("Q?", "map", ["a", "b", "c"])
    repo.save(state)
    again = repo.load()
    assert again.players["bob"].points == 7
    assert again.players["bob"].history[2].attempts == 4
    assert again.current_riddle_id == 3
    assert len(again.riddles) == 3


def test_counter_seeded_from_highest_riddle_when_meta_is_stale(tmp_path):
    repo = setup_repo(tmp_path)
    repo.save(sample_state())
    with Session(repo.engine) as s:
        meta = s.get(models.GameMeta, 1)
        meta.riddle_counter = 1
        s.add(meta)
        s.commit()
    assert repo.load().riddle_counter == 3


def test_missing_tables_raise_persistence_error(tmp_path):
    repo = SQLStateRepository(make_engine(f'sqlite:///{tmp_path / "empty.db"}'))
    with pytest.raises(PersistenceError):
        repo.load()
    with pytest.raises(PersistenceError):
        repo.save(sample_state())


def test_migrations_are_idempotent(tmp_path):
    repo = setup_repo(tmp_path)
    assert run_migrations(repo.engine) == 3
    assert run_migrations(repo.engine) == 0


def test_memory_repository_isolates_unsaved_changes():
    repo = MemoryStateRepository(sample_state())
    state = repo.load()
    state.players["alice"].points = 999
    assert repo.load().players["alice"].points == 15
    repo.save(state)
    assert repo.load().players["alice"].points == 999


def test_init_db_uses_database_url(tmp_path, monkeypatch):
    from riddleme import deps
    from riddleme.init_db import init_db

    url = f'sqlite:///{tmp_path / "env.db"}'
    monkeypatch.setenv('DATABASE_URL', url)
    engine = init_db()
    assert engine.url.database == str(tmp_path / "env.db")
    with Session(engine) as session:
        assert len(session.exec(select(Migration)).all()) == 3

    monkeypatch.setenv('RIDDLE_PROVIDER', 'static')
    deps.configure()
    assert isinstance(deps.repository, SQLStateRepository)
    assert deps.repository.load().riddles == []
