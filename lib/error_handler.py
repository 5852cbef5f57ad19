from typing import Optional
import logging

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Sorry, something went wrong. Please try again later."

class AppError(Exception):
    def __init__(self, message: str, status_code: int = 500, user_message: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.user_message = user_message or GENERIC_FAILURE
        super().__init__(self.message)

class InvalidPayloadError(AppError):
    """Inbound payload rejected before the pipeline runs."""

    def __init__(self, message: str):
        super().__init__(message, status_code=400)

class PersistenceError(AppError):
    """A repository write or read failed; fatal for the current message."""

class ProviderUnavailableError(AppError):
    """A single generation or transcription provider call failed."""

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message, status_code=503)

class AllProvidersFailedError(AppError):
    def __init__(self, errors: Optional[dict] = None):
        self.errors = errors or {}
        super().__init__("All AI services are currently unavailable", status_code=503)

class CarrierError(AppError):
    """Outbound SMS could not be handed to the carrier."""

class ErrorHandler:
    @staticmethod
    def handle_storage_error(error: Exception) -> str:
        logger.error(f"Storage error: {str(error)}")
        return GENERIC_FAILURE

    @staticmethod
    def handle_generation_error(error: Exception) -> str:
        logger.error(f"Generation error: {str(error)}")
        return "Sorry, I'm having trouble thinking right now. Please try again in a few minutes."

    @staticmethod
    def handle_sms_error(error: Exception) -> str:
        logger.error(f"SMS error: {str(error)}", exc_info=True)
        return GENERIC_FAILURE
