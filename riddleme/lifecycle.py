"""
Riddle lifecycle: which riddle is current, and replacing it.

Rotation happens when there is no current riddle, when a player solves the
current riddle for the first time, when the current riddle is skipped, and on
an explicit regenerate request.

Writes go through :meth:`RiddleLifecycle.apply`. The provider is never called
while the lock is held, so a slow generation stalls only the request that
triggered it.
"""
import threading
from typing import Callable, Optional, Sequence, Tuple

from .crud import StateRepository
from .errors import MalformedProviderResponse
from .game import normalize_answer
from .logging_utils import get_logger
from .providers import MalformedResponse, RiddleProvider, ValidRiddle
from .state import GameState, Riddle

logger = get_logger("riddleme.lifecycle")

# how many recent answers are passed to the provider as exclusions
RECENT_ANSWER_WINDOW = 10

# what a mutation asks apply() to do with the state it touched
KEEP = "keep"
SAVE = "save"
ROTATE = "rotate"


class RiddleLifecycle:
    def __init__(self, repository: StateRepository, provider: RiddleProvider,
                 lock=None, recent_window: int = RECENT_ANSWER_WINDOW):
        self.repository = repository
        self.provider = provider
        self.lock = lock if lock is not None else threading.RLock()
        self.recent_window = recent_window

    def get_current(self) -> dict:
        """Public view of the active riddle, generating one if there is none."""
        riddle = self.repository.load().current_riddle()
        if riddle is not None:
            return riddle.public()

        def mutate(state):
            current = state.current_riddle()
            return current, (KEEP if current is not None else ROTATE)

        current, new = self.apply(mutate)
        return (new or current).public()

    def regenerate(self) -> dict:
        _, riddle = self.apply(lambda state: (None, ROTATE))
        return riddle.public()

    def apply(self, mutate: Callable[[GameState], Tuple[object, str]],
              after_save: Optional[Callable[[], None]] = None):
        """Load, mutate and save the state under the lock.

        ``mutate(state)`` changes a freshly loaded state and returns
        ``(result, action)`` where action is KEEP, SAVE or ROTATE. For ROTATE
        the replacement is generated with the lock released and the mutation
        is replayed on a new load; the candidate is installed only if the
        current riddle has not moved in the meantime. Nothing is saved unless
        the whole mutation, rotation included, succeeded.

        Returns ``(result, new_riddle)``; ``new_riddle`` is None without a
        rotation.
        """
        candidate = None
        while True:
            with self.lock:
                state = self.repository.load()
                result, action = mutate(state)
                if action == KEEP:
                    return result, None
                riddle = None
                if action == ROTATE:
                    if candidate is None or candidate[0] != state.current_riddle_id:
                        basis = state
                    else:
                        riddle = self.install(state, candidate[1])
                if action == SAVE or riddle is not None:
                    self.repository.save(state)
                    if after_save is not None:
                        after_save()
                    return result, riddle
            if candidate is not None:
                logger.info("rotation_raced", extra={"riddle_id": basis.current_riddle_id})
            candidate = (basis.current_riddle_id, self.prepare(basis))

    def advance(self, state: GameState, exclude_answers: Optional[Sequence[str]] = None) -> Riddle:
        """Generate a new riddle into ``state`` and make it current.

        Only the in-memory state is changed; the caller saves it.
        """
        return self.install(state, self.prepare(state, exclude_answers))

    def prepare(self, state: GameState, exclude_answers: Optional[Sequence[str]] = None) -> ValidRiddle:
        """Ask the provider for a replacement without touching ``state``.

        If the provider hands back an excluded answer we ask once more with a
        stricter prompt and take whatever that returns.
        """
        if exclude_answers is None:
            exclude_answers = state.recent_answers(self.recent_window)
        exclude = [normalize_answer(a) for a in exclude_answers]

        candidate = self._generate(exclude, strict=False)
        if normalize_answer(candidate.answer) in exclude:
            logger.info("duplicate_answer_retry", extra={"provider": self.provider.name, "retry": 1})
            candidate = self._generate(exclude, strict=True)
        return candidate

    def install(self, state: GameState, candidate: ValidRiddle) -> Riddle:
        previous = state.current_riddle_id
        riddle = state.add_riddle(candidate.question, normalize_answer(candidate.answer), list(candidate.hints))
        logger.info(
            "riddle_generated",
            extra={"riddle_id": riddle.id, "provider": self.provider.name, "reason": f"replaces {previous}"},
        )
        return riddle

    def _generate(self, exclude: Sequence[str], strict: bool) -> ValidRiddle:
        result = self.provider.generate(exclude, strict=strict)
        if isinstance(result, MalformedResponse):
            logger.warning("malformed_riddle_retry", extra={"provider": self.provider.name, "reason": result.reason})
            result = self.provider.generate(exclude, strict=strict)
            if isinstance(result, MalformedResponse):
                logger.error("malformed_riddle", extra={"provider": self.provider.name, "reason": result.reason})
                raise MalformedProviderResponse()
        return result
