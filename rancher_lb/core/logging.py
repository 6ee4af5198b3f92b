"""Logging configuration utilities for the Rancher load balancer provider."""
import logging
import os

# httpx logs every request at INFO; Cattle traffic is already counted in metrics.
QUIET_LOGGERS = ("httpx", "httpcore")


def setup_logging() -> None:
    """Configure root logging from LOG_LEVEL; HTTP client chatter stays at WARNING."""
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.getLogger().level, logging.WARNING))
