"""
Configuration management for the liveness engine
"""
import logging
import os
from dotenv import load_dotenv

load_dotenv()


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == 'true'


class Config:
    """Engine configuration"""

    # Challenge sequence
    REQUIRED_CHALLENGES = int(os.getenv('REQUIRED_CHALLENGES', '2'))
    EXTENDED_CHALLENGES = _get_bool('EXTENDED_CHALLENGES', 'false')
    MAX_ATTEMPT_DURATION_SECONDS = float(os.getenv('MAX_ATTEMPT_DURATION_SECONDS', '120'))

    # Decision
    ACCEPTANCE_THRESHOLD = int(os.getenv('ACCEPTANCE_THRESHOLD', '80'))

    # Loop cadence
    DETECTION_INTERVAL_SECONDS = float(os.getenv('DETECTION_INTERVAL_SECONDS', '0.1'))
    PASSIVE_INTERVAL_SECONDS = float(os.getenv('PASSIVE_INTERVAL_SECONDS', '0.2'))
    PROGRESS_INTERVAL_SECONDS = float(os.getenv('PROGRESS_INTERVAL_SECONDS', '0.1'))

    # Pauses between challenges
    FIRST_CHALLENGE_DELAY_SECONDS = float(os.getenv('FIRST_CHALLENGE_DELAY_SECONDS', '2'))
    NEXT_CHALLENGE_DELAY_SECONDS = float(os.getenv('NEXT_CHALLENGE_DELAY_SECONDS', '1'))
    RETRY_DELAY_SECONDS = float(os.getenv('RETRY_DELAY_SECONDS', '2'))

    # ML Model Configuration
    FACE_DETECTOR_MODEL_PATH = os.getenv(
        'FACE_DETECTOR_MODEL_PATH', 'models/blaze_face_short_range.tflite'
    )
    FACE_LANDMARKER_MODEL_PATH = os.getenv(
        'FACE_LANDMARKER_MODEL_PATH', 'models/face_landmarker.task'
    )

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


def configure_logging(level: str = None) -> None:
    """Configure root logging for scripts and demos embedding the engine."""
    logging.basicConfig(
        level=getattr(logging, (level or Config.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )


config = Config()
