import logging
import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def working_path(env_name: str, default: str) -> Path:
    """Path from the environment, or ``default`` under the current working directory."""
    return Path(os.getenv(env_name) or Path.cwd() / default)


class Config:
    # API Keys
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    KOPIS_API_KEY = os.getenv("KOPIS_API_KEY")

    # Models
    GEMINI_MODEL = os.getenv("GEMINI_MODEL", "models/gemini-flash-latest")
    GEMINI_VISION_MODEL = os.getenv("GEMINI_VISION_MODEL") or GEMINI_MODEL

    # Catalog store
    SUPABASE_URL = os.getenv("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    LOCAL_DB_PATH = working_path("LOCAL_DB_PATH", "output/local.db")

    # KOPIS
    KOPIS_BASE_URL = os.getenv(
        "KOPIS_BASE_URL", "http://www.kopis.or.kr/openApi/restful/pblprfr"
    )
    KOPIS_START_DATE = os.getenv("KOPIS_START_DATE", "2026-01-01")

    # Tagging pipeline
    TEXT_BATCH_SIZE = 8
    SYNOPSIS_PROMPT_CHARS = 400
    MAX_IMAGES = 3
    IMAGE_MAX_SIZE = 1024
    JPEG_QUALITY = 80
    RETRY_TRIES = int(os.getenv("RETRY_TRIES", "4"))
    RETRY_BASE_DELAY = float(os.getenv("RETRY_BASE_DELAY", "1.0"))
    TEXT_BATCH_DELAY = 0.3
    TEXT_ITEM_DELAY = 0.2
    IMAGE_ITEM_DELAY = 0.2
    CONSISTENCY_RETRY_DELAY = 2.0

    # Logging
    LOG_FILE = working_path("LOG_FILE", "pipeline.log")

    @classmethod
    def validate(cls, *names: str) -> None:
        """Check that the named settings are present for the job being run."""
        required = names or ("GEMINI_API_KEY",)
        missing = [name for name in required if not getattr(cls, name, None)]
        if missing:
            raise ValueError(f"{', '.join(missing)} not set in .env or environment.")

    @classmethod
    def setup_logging(cls, level: int = logging.INFO) -> None:
        """Configure logging to file and console."""
        cls.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(cls.LOG_FILE, encoding="utf-8")
        stream_handler = logging.StreamHandler()

        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
        file_handler.setFormatter(formatter)
        stream_handler.setFormatter(formatter)

        logger = logging.getLogger()
        logger.setLevel(level)

        # Avoid duplicate handlers
        if not logger.handlers:
            logger.addHandler(file_handler)
            logger.addHandler(stream_handler)
        else:
            logging.basicConfig(level=level, handlers=[file_handler, stream_handler], force=True)
