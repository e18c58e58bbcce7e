from pydantic import BaseModel
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List


class RewardTier(BaseModel):
    """Airtime awarded when a learner scores at least `min_percentage`."""
    min_percentage: int
    learner_amount: int
    caregiver_amount: int


DEFAULT_REWARD_TIERS = [
    RewardTier(min_percentage=90, learner_amount=10, caregiver_amount=5),
    RewardTier(min_percentage=70, learner_amount=5, caregiver_amount=2),
    RewardTier(min_percentage=50, learner_amount=2, caregiver_amount=1),
]


class Settings(BaseSettings):
    """Application configuration from environment variables."""

    # Africa's Talking (empty api key = mock provider)
    at_username: str = "sandbox"
    at_api_key: str = ""
    at_sender_id: str = ""
    at_voice_number: str = ""
    at_currency: str = "KES"
    provider_timeout: int = 30  # seconds

    # Public URL Africa's Talking calls back into
    base_url: str = "http://localhost:8000"

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    session_timeout: int = 3600  # in-flight session TTL, seconds

    # App Settings
    debug: bool = True
    log_level: str = "INFO"

    # Lessons
    voice_lesson_id: str = "basic-addition-001"
    default_language: str = "en"
    default_learner_name: str = "Student"

    # Voice gathers (enforced by the provider)
    gather_timeout: int = 6
    caregiver_entry_timeout: int = 15

    # SMS Settings
    sms_question_delay: float = 2.0  # seconds between intro and first question

    # Completion & rewards
    pass_threshold: float = 0.7
    reward_tiers: List[RewardTier] = DEFAULT_REWARD_TIERS
    reward_caregivers: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
