import pytest

from riddleme.crud import MemoryStateRepository
from riddleme.errors import GenerationUnavailable, NotFound, ValidationError
from riddleme.lifecycle import RiddleLifecycle
from riddleme.providers import RiddleProvider, StaticRiddleProvider
from riddleme.scoring import ScoringEngine
from riddleme.state import SKIPPED, SOLVED


def make_engine(validate=False, provider=None):
    repo = MemoryStateRepository()
    lc = RiddleLifecycle(repo, provider or StaticRiddleProvider())
    engine = ScoringEngine(repo, lc, validate_points=validate)
    current = lc.get_current()
    return engine, repo, current["id"]


class BrokenProvider(RiddleProvider):
    def generate(self, exclude_answers, strict=False):
        raise GenerationUnavailable()


def test_correct_first_answer_awards_and_rotates():
    engine, repo, rid = make_engine()
    out = engine.submit_answer("alice", rid, "  ECHO ", hints_used=0, proposed_points=25)
    assert out.as_response() == {"correct": True, "points": 25, "totalPoints": 25,
                                 "message": "Correct! You earned 25 points!"}
    state = repo.load()
    assert state.current_riddle_id != rid
    assert state.players["alice"].history[rid].status == SOLVED


def test_duplicate_correct_submissions_award_once():
    engine, repo, rid = make_engine()
    engine.submit_answer("alice", rid, "echo", proposed_points=25)
    for _ in range(3):
        out = engine.submit_answer("alice", rid, "echo", proposed_points=25)
        assert out.correct is True
        assert out.points == 0
        assert out.total_points == 25
    state = repo.load()
    assert state.players["alice"].points == 25
    # no extra rotations either
    assert len(state.riddles) == 2


def test_wrong_answer_counts_attempts_and_hides_answer():
    engine, repo, rid = make_engine()
    out = engine.submit_answer("bob", rid, "shadow")
    assert out.as_response() == {"correct": False, "message": "Wrong answer, try again!"}
    assert "echo" not in out.message
    engine.submit_answer("bob", rid, "wind")
    entry = repo.load().players["bob"].history[rid]
    assert entry.attempts == 2
    assert entry.points_awarded == 0
    assert repo.load().current_riddle_id == rid


def test_wrong_then_correct_awards_and_rotates():
    engine, repo, rid = make_engine()
    engine.submit_answer("alice", rid, "wrong", hints_used=1, proposed_points=15)
    out = engine.submit_answer("alice", rid, "echo", hints_used=1, proposed_points=10)
    assert out.points == 10 and out.total_points == 10
    assert out.rotated
    assert repo.load().current_riddle_id != rid


def test_late_solver_of_rotated_riddle_gets_points_without_rotation():
    engine, repo, rid = make_engine()
    engine.submit_answer("carol", rid, "wrong")
    engine.submit_answer("alice", rid, "echo", proposed_points=25)
    current = repo.load().current_riddle_id
    out = engine.submit_answer("carol", rid, "echo", proposed_points=20)
    assert out.points == 20 and not out.rotated
    assert repo.load().current_riddle_id == current


def test_missing_proposed_points_uses_server_computation():
    engine, _, rid = make_engine()
    engine.submit_answer("dave", rid, "nope", hints_used=2)
    out = engine.submit_answer("dave", rid, "echo", hints_used=2)
    assert out.points == 5


def test_negative_proposal_floors_at_zero():
    engine, repo, rid = make_engine()
    out = engine.submit_answer("erin", rid, "echo", proposed_points=-10)
    assert out.points == 0
    assert repo.load().players["erin"].points == 0


def test_validate_mode_caps_inflated_points():
    engine, _, rid = make_engine(validate=True)
    engine.submit_answer("mallory", rid, "nope", hints_used=1)
    out = engine.submit_answer("mallory", rid, "echo", hints_used=1, proposed_points=25)
    assert out.points == 10


def test_trust_mode_accepts_client_points():
    engine, _, rid = make_engine(validate=False)
    out = engine.submit_answer("trent", rid, "echo", hints_used=3, proposed_points=25)
    assert out.points == 25


def test_skip_records_zero_points_and_rotates():
    engine, repo, rid = make_engine()
    engine.submit_answer("frank", rid, "nope")
    result = engine.skip("frank", rid)
    assert result["riddle"]["id"] != rid
    assert "answer" not in result["riddle"]
    entry = repo.load().players["frank"].history[rid]
    assert entry.status == SKIPPED and entry.points_awarded == 0 and entry.attempts == 1
    # terminal: a later correct answer earns nothing
    out = engine.submit_answer("frank", rid, "echo", proposed_points=25)
    assert out.points == 0
    assert repo.load().players["frank"].points == 0


def test_wrong_answer_after_terminal_state_changes_nothing():
    engine, repo, rid = make_engine()
    engine.submit_answer("gina", rid, "echo", proposed_points=25)
    out = engine.submit_answer("gina", rid, "nope")
    assert out.correct is False
    assert repo.load().players["gina"].history[rid].attempts == 0


def test_skip_of_stale_riddle_does_not_rotate_again():
    engine, repo, rid = make_engine()
    engine.skip("henry", rid)
    current = repo.load().current_riddle_id
    result = engine.skip("ivan", rid)
    assert result["riddle"]["id"] == current
    assert repo.load().current_riddle_id == current


@pytest.mark.parametrize("kwargs", [
    {"username": "", "riddle_id": 1, "raw_answer": "x"},
    {"username": "   ", "riddle_id": 1, "raw_answer": "x"},
    {"username": "a", "riddle_id": 1, "raw_answer": "  "},
    {"username": "a", "riddle_id": None, "raw_answer": "x"},
    {"username": "a", "riddle_id": "abc", "raw_answer": "x"},
    {"username": "a", "riddle_id": 1, "raw_answer": "x", "hints_used": 4},
    {"username": "a", "riddle_id": 1, "raw_answer": "x", "hints_used": "two"},
    {"username": "a", "riddle_id": 1, "raw_answer": "echo", "proposed_points": "lots"},
    {"username": "a", "riddle_id": 1, "raw_answer": "echo", "proposed_points": [25]},
])
def test_submit_validation_errors(kwargs):
    engine, _, _ = make_engine()
    with pytest.raises(ValidationError):
        engine.submit_answer(**kwargs)


def test_unknown_riddle_is_not_found():
    engine, _, _ = make_engine()
    with pytest.raises(NotFound):
        engine.submit_answer("a", 999, "x")
    with pytest.raises(NotFound):
        engine.skip("a", 999)


def test_failed_rotation_commits_nothing():
    repo = MemoryStateRepository()
    seed_lc = RiddleLifecycle(repo, StaticRiddleProvider())
    rid = seed_lc.get_current()["id"]
    engine = ScoringEngine(repo, RiddleLifecycle(repo, BrokenProvider()))
    with pytest.raises(GenerationUnavailable):
        engine.submit_answer("judy", rid, "echo", proposed_points=25)
    state = repo.load()
    assert "judy" not in state.players
    assert state.current_riddle_id == rid


def test_player_summary():
    engine, _, rid = make_engine()
    engine.submit_answer("kim", rid, "nope")
    engine.submit_answer("kim", rid, "echo", proposed_points=20)
    summary = engine.player_summary("kim")
    assert summary["points"] == 20
    assert summary["solved"] == 1 and summary["skipped"] == 0
    assert summary["wrongAttempts"] == 1
    assert summary["history"][0]["riddleId"] == rid
    with pytest.raises(NotFound):
        engine.player_summary("nobody")


def test_points_equal_sum_of_awarded_entries():
    engine, repo, rid = make_engine()
    engine.submit_answer("lee", rid, "echo", proposed_points=25)
    rid2 = repo.load().current_riddle_id
    engine.submit_answer("lee", rid2, "nope")
    engine.submit_answer("lee", rid2, "footsteps", proposed_points=20)
    engine.submit_answer("lee", rid2, "footsteps", proposed_points=20)
    player = repo.load().players["lee"]
    assert player.points == sum(e.points_awarded for e in player.history.values()) == 45
