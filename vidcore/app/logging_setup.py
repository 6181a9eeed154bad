import logging
import sys
from typing import Optional


def setup_logging(level: str = "INFO", engine_level: Optional[str] = None) -> None:
    root_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )

    # engine modules can run at their own level without touching the rest
    if engine_level:
        logging.getLogger("vidcore.engine").setLevel(
            getattr(logging, engine_level.upper(), root_level)
        )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
