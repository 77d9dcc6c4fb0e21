import os
import threading

from . import crud, providers
from .init_db import init_db
from .lifecycle import RiddleLifecycle
from .scoring import ScoringEngine

# serialises load-mutate-save of the aggregate; provider calls run outside it
_LOCK = threading.RLock()

repository = None
provider = None


def configure(repo=None, prov=None):
    """Install the repository and provider used by request handlers.

    Anything not passed is built from the environment (DATABASE_URL,
    RIDDLE_PROVIDER and friends).
    """
    global repository, provider
    if repo is None:
        repo = crud.SQLStateRepository(init_db())
    repository = repo
    provider = prov if prov is not None else providers.build_provider_from_env()


def _ensure_configured():
    if repository is None or provider is None:
        configure(repository, provider)


def get_lifecycle() -> RiddleLifecycle:
    _ensure_configured()
    return RiddleLifecycle(repository, provider, lock=_LOCK)


def get_scoring() -> ScoringEngine:
    lifecycle = get_lifecycle()
    validate = os.getenv("SCORING_MODE", "trust").lower() == "validate"
    return ScoringEngine(lifecycle.repository, lifecycle, validate_points=validate)
