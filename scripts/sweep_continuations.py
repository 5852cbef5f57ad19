import logging

from api.routes import configure_logging
from api.services.continuation import ContinuationManager
from lib.config import get_settings
from lib.database import create_repositories

logger = logging.getLogger(__name__)

def sweep_continuations(repositories=None) -> int:
    """Delete continuations whose 24 hour window has passed. Safe to run repeatedly."""
    try:
        repositories = repositories or create_repositories(get_settings())
        manager = ContinuationManager(repositories.continuations)
        return manager.sweep_expired()
    except Exception as e:
        logger.error(f"Error sweeping continuations: {str(e)}")
        raise

if __name__ == "__main__":
    configure_logging()
    removed = sweep_continuations()
    print(f"Removed {removed} expired continuations")
