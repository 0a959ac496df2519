"""Cronograma API server entry point."""
import argparse
import sys

import uvicorn
from loguru import logger

from .config import settings
from .services import create_app


def setup_logging(debug: bool = False) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if debug else "INFO",
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
               "<cyan>{extra[module]}</cyan> - <level>{message}</level>",
    )
    logger.configure(extra={"module": "cronograma"})


def main() -> None:
    parser = argparse.ArgumentParser(description="Cronograma schedule API")
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    parser.add_argument("--debug", action="store_true", default=settings.debug)
    args = parser.parse_args()

    setup_logging(args.debug)
    logger.info(f"Data directory: {settings.data_dir}")
    uvicorn.run(
        create_app(settings),
        host=args.host,
        port=args.port,
        log_level="debug" if args.debug else "info",
    )


if __name__ == "__main__":
    main()
