"""
Error taxonomy for the lesson delivery core.

Configuration errors end the current conversation turn with an apology,
provider errors are isolated per side effect, and invalid transitions
guard the session invariants.
"""

from typing import Optional


APOLOGY_MESSAGE = "Sorry, there was an error. Please try again later."


class SoundStepsError(Exception):
    def __init__(self, message: str, user_message: Optional[str] = None):
        self.message = message
        self.user_message = user_message or APOLOGY_MESSAGE
        super().__init__(self.message)


class ConfigurationError(SoundStepsError):
    """Unknown flow state, dangling flow pointer, or unusable lesson."""


class LessonNotFoundError(ConfigurationError):
    def __init__(self, lesson_id: str):
        self.lesson_id = lesson_id
        super().__init__(f"Lesson not found: {lesson_id}")


class InvalidTransitionError(SoundStepsError):
    """A session change that would break its invariants."""


class ProviderError(SoundStepsError):
    def __init__(
        self,
        message: str,
        provider: str = "africastalking",
        status_code: Optional[int] = None
    ):
        self.provider = provider
        self.status_code = status_code
        super().__init__(message, "Message couldn't be sent. Please try again later.")
