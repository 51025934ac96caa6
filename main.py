"""
Entry point for the spending categorization service.

Loads .env, validates settings, prepares the sqlite database and serves
the FastAPI app with uvicorn. Workers start with the app's lifespan.
"""
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError

from core.config import Settings, get_settings
from core.db import Database
from core.exceptions import CategorizerException, ConfigurationError
from core.logger import quiet_library_loggers, setup_logger

_env_file = PROJECT_ROOT / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

logger = setup_logger(__name__)


def load_settings() -> Settings:
    """Load settings, turning validation failures into a ConfigurationError."""
    try:
        return get_settings()
    except PydanticValidationError as e:
        raise ConfigurationError(
            "Invalid configuration",
            details={"errors": [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()]}
        )


def prepare_database(settings: Settings) -> Database:
    """Create the schema and seed the category catalog before serving."""
    database = Database(settings.database_path)
    database.init_db()
    logger.info(f"Category catalog has {len(database.list_categories())} entries")
    return database


def main():
    if not _env_file.exists():
        logger.warning(".env file not found, using environment variables and defaults")

    try:
        settings = load_settings()
        quiet_library_loggers(settings.log_level)
        prepare_database(settings)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e.message}")
        for error in e.details.get("errors", []):
            logger.error(f"  {error}")
        sys.exit(1)
    except CategorizerException as e:
        logger.error(f"Startup failed: {e.message}")
        sys.exit(1)

    import uvicorn
    from app.api import app

    logger.info(
        f"Starting {settings.app_name} on {settings.host}:{settings.port} "
        f"(model {settings.openrouter_model}, {settings.num_workers} worker(s), queue size {settings.queue_size})"
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
