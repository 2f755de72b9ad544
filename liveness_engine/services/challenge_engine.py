"""
Challenge Engine for selecting active liveness challenges
"""
import logging
import random
import secrets
from typing import Dict, List, Optional, Sequence, Set

from ..config import config
from ..models.data_models import ChallengeDescriptor
from . import challenge_verifier

logger = logging.getLogger(__name__)


class ChallengeEngine:
    """
    Holds the challenge pool and picks challenges without repetition.

    A challenge is not offered twice until every challenge in the pool has
    been used; then the pool is refilled and everything is eligible again.
    """

    # Standard pool: blink, smile, head turn
    STANDARD_POOL = [
        "blink",
        "smile",
        "turn_head",
    ]

    # Extended pool adds three coarse-landmark gestures
    EXTENDED_POOL = STANDARD_POOL + [
        "mouth_open",
        "eyebrow_raise",
        "eye_movement",
    ]

    CHALLENGE_NAMES = {
        "blink": "Blink Detection",
        "smile": "Smile Detection",
        "turn_head": "Head Turn",
        "mouth_open": "Mouth Open",
        "eyebrow_raise": "Eyebrow Raise",
        "eye_movement": "Eye Movement",
    }

    # Human-readable instructions for each challenge
    CHALLENGE_INSTRUCTIONS = {
        "blink": "Please blink your eyes twice",
        "smile": "Please smile naturally",
        "turn_head": "Turn your head slowly left, then right",
        "mouth_open": "Please open your mouth",
        "eyebrow_raise": "Please raise your eyebrows",
        "eye_movement": "Look left, then right, without moving your head",
    }

    CHALLENGE_ICONS = {
        "blink": "👁️",
        "smile": "😊",
        "turn_head": "↔️",
        "mouth_open": "😮",
        "eyebrow_raise": "🤨",
        "eye_movement": "👀",
    }

    CHALLENGE_DURATIONS = {
        "blink": 10.0,
        "smile": 8.0,
        "turn_head": 12.0,
        "mouth_open": 10.0,
        "eyebrow_raise": 10.0,
        "eye_movement": 10.0,
    }

    CHALLENGE_VERIFIERS = {
        "blink": challenge_verifier.verify_blink,
        "smile": challenge_verifier.verify_smile,
        "turn_head": challenge_verifier.verify_head_turn,
        "mouth_open": challenge_verifier.verify_mouth_open,
        "eyebrow_raise": challenge_verifier.verify_eyebrow_raise,
        "eye_movement": challenge_verifier.verify_eye_movement,
    }

    def __init__(
        self,
        extended: Optional[bool] = None,
        descriptors: Optional[Sequence[ChallengeDescriptor]] = None,
        rng: Optional[random.Random] = None
    ):
        """
        Args:
            extended: Use the 6-challenge pool (defaults to Config.EXTENDED_CHALLENGES)
            descriptors: Explicit pool, overriding the built-in one
            rng: Random source; a cryptographically secure one by default
        """
        self.extended = config.EXTENDED_CHALLENGES if extended is None else extended
        self._rng = rng or secrets.SystemRandom()

        if descriptors is None:
            pool = self.EXTENDED_POOL if self.extended else self.STANDARD_POOL
            descriptors = [self.build_descriptor(challenge_id) for challenge_id in pool]

        self.descriptors: List[ChallengeDescriptor] = list(descriptors)
        self._by_id: Dict[str, ChallengeDescriptor] = {
            d.challenge_id: d for d in self.descriptors
        }
        self._used: Set[str] = set()

    @classmethod
    def build_descriptor(cls, challenge_id: str) -> ChallengeDescriptor:
        """Create the built-in descriptor for a challenge identifier."""
        if challenge_id not in cls.CHALLENGE_VERIFIERS:
            raise ValueError(f"Unknown challenge: {challenge_id}")
        return ChallengeDescriptor(
            challenge_id=challenge_id,
            name=cls.CHALLENGE_NAMES[challenge_id],
            instruction=cls.CHALLENGE_INSTRUCTIONS[challenge_id],
            icon=cls.CHALLENGE_ICONS[challenge_id],
            duration_seconds=cls.CHALLENGE_DURATIONS[challenge_id],
            verifier=cls.CHALLENGE_VERIFIERS[challenge_id],
        )

    def get(self, challenge_id: str) -> ChallengeDescriptor:
        """Look up a pool member, e.g. to retry the same challenge after a failure."""
        try:
            return self._by_id[challenge_id]
        except KeyError:
            raise ValueError(f"Challenge not in pool: {challenge_id}")

    def select_next(self) -> Optional[ChallengeDescriptor]:
        """
        Pick an unused challenge uniformly at random.

        Returns:
            ChallengeDescriptor, or None only when the pool is empty
        """
        if not self.descriptors:
            return None

        available = [d for d in self.descriptors if d.challenge_id not in self._used]
        if not available:
            logger.debug("Challenge pool exhausted, refilling")
            self._used.clear()
            available = list(self.descriptors)

        descriptor = self._rng.choice(available)
        self._used.add(descriptor.challenge_id)
        return descriptor

    @property
    def used_ids(self) -> Set[str]:
        return set(self._used)

    def reset(self) -> None:
        self._used.clear()
