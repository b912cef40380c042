"""Logging configuration for the application"""
import logging

from disputekit import config


def setup_logging():
    """Configure logging for the application"""
    logging.basicConfig(
        level=getattr(logging, config.log_level(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    # Silence noisy third-party libraries
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
