#!/usr/bin/env python3
"""
Script to run the FastAPI application.
"""

import logging
import sys

from dotenv import load_dotenv

from privacy_advisor.core.config import init_config

logger = logging.getLogger(__name__)


def main():
    """Start the API server."""
    # Load environment variables from .env file
    load_dotenv()

    try:
        config = init_config()
    except Exception as e:
        print(f"Failed to initialize configuration: {e}", file=sys.stderr)
        print("\nSet REDIS_URL and QUEUE_EXECUTOR in the environment or a .env file.", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, config.monitoring.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info("Configuration initialized successfully")

    import uvicorn

    logger.info(f"Starting API server on {config.api.host}:{config.api.port}")

    uvicorn.run(
        "privacy_advisor.api.main:create_app",
        factory=True,
        host=config.api.host,
        port=config.api.port,
        reload=config.api.reload,
        workers=1 if config.api.reload else config.api.workers,
        log_level=config.monitoring.log_level.lower()
    )


if __name__ == "__main__":
    main()
