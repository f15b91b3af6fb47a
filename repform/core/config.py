import os
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '../../'))
load_dotenv(os.path.join(BASE_DIR, '.env'))

DATA_DIR = os.path.join(os.path.expanduser('~'), '.repform')


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix='REPFORM_', extra='ignore')

    PROJECT_NAME: str = 'RepForm'
    DATABASE_URL: str = 'sqlite:///' + os.path.join(DATA_DIR, 'calibrations.db')
    FALLBACK_STORE_PATH: str = os.path.join(DATA_DIR, 'calibration_fallback.json')
    LOG_DIR: str = os.path.join(DATA_DIR, 'logs')
    LOGGING_CONFIG_FILE: str = os.path.join(BASE_DIR, 'logging.ini')
    SESSION_LOGS_ENABLED: bool = False

    # Calibration collection
    REQUIRED_FRAMES: int = 60
    FRAME_THROTTLE_INTERVAL: float = 0.033  # ~30 fps
    SAMPLE_INTERVAL: float = 0.1  # progress timer, ~10 Hz
    MAX_MOTION_HISTORY: int = 30
    CALIBRATION_TIMEOUT: float = 60.0

    # Calibration quality tiers (score out of 100)
    QUALITY_EXCELLENT: float = 90.0
    QUALITY_GOOD: float = 80.0
    QUALITY_ACCEPTABLE: float = 70.0
    QUALITY_POOR: float = 60.0

    # Strategy score ceilings
    PARTIAL_BODY_SCORE_CEILING: float = 75.0
    KEY_POINT_SCORE_CEILING: float = 65.0
    MANUAL_SCORE_CEILING: float = 60.0

    # Real-time feedback
    FEEDBACK_INTERVAL: float = 0.1
    MIN_AUDIO_INTERVAL: float = 3.0
    GOOD_FORM_THRESHOLD: float = 0.8
    POOR_FORM_THRESHOLD: float = 0.5
    CHANNEL_CAPACITY: int = 64

    # Store maintenance
    RETENTION_DAYS: int = 90


settings = Settings()
