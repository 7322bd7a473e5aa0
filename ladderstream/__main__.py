"""
Command-line entry point: ``python -m ladderstream``
"""

import argparse
import logging

import uvicorn

from . import __version__
from .config import load_config, set_config
from .logs import configure_logging

logger = logging.getLogger(__name__)


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="LadderStream transcoding server")
    parser.add_argument("-c", "--config", help="Path to ladderstream.yaml")
    parser.add_argument("--host", help="Override server.host")
    parser.add_argument("--port", type=int, help="Override server.port")
    parser.add_argument("--version", action="version", version=f"ladderstream {__version__}")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    set_config(config)

    configure_logging(config.logging)
    logger.info(f"Ladder: {', '.join(spec.label for spec in config.ladder) or '(empty)'}")

    uvicorn.run(
        "ladderstream.api:create_app",
        factory=True,
        host=config.server.host,
        port=config.server.port,
        log_config=None
    )


if __name__ == "__main__":
    main()
