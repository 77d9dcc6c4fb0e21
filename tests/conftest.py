import sys
from pathlib import Path
import pytest

# Ensure project root is on sys.path so tests can import the `riddleme` package
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_shared_state():
	# Rate limiter, leaderboard cache and wiring are module-level; isolate tests
	import riddleme.main as app_main
	from riddleme import deps
	from riddleme.cache import get_cache
	app_main._RATE_LIMIT_STORE.clear()
	get_cache().clear()
	yield
	deps.repository = None
	deps.provider = None
