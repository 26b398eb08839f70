# src/config.py
"""
Consensus Simulator Configuration - Environment-based configuration
Protocol timings, node addressing and logging for every node in the network
"""

import os
import logging.config
from typing import Optional
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


class Settings:
    """Simulator settings loaded from environment variables"""

    # ==========================================================================
    # Application Settings
    # ==========================================================================
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: Optional[str] = os.getenv("LOG_FILE") or None

    # ==========================================================================
    # Node Addressing
    # ==========================================================================
    NODE_HOST: str = os.getenv("NODE_HOST", "127.0.0.1")
    BASE_NODE_PORT: int = int(os.getenv("BASE_NODE_PORT", "3000"))
    DELIVERY_TIMEOUT: float = float(os.getenv("DELIVERY_TIMEOUT", "2.0"))

    # ==========================================================================
    # Protocol Timings (milliseconds)
    # ==========================================================================
    SETTLING_INTERVAL_MS: int = int(os.getenv("SETTLING_INTERVAL_MS", "100"))
    ROUND_DELAY_MS: int = int(os.getenv("ROUND_DELAY_MS", "50"))
    READINESS_POLL_MS: int = int(os.getenv("READINESS_POLL_MS", "50"))

    # ==========================================================================
    # Protocol Constants
    # ==========================================================================
    MIN_DECISION_ROUND: int = int(os.getenv("MIN_DECISION_ROUND", "2"))
    REPORTED_ROUND_FLOOR: int = int(os.getenv("REPORTED_ROUND_FLOOR", "11"))

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @property
    def settling_interval(self) -> float:
        return self.SETTLING_INTERVAL_MS / 1000.0

    @property
    def round_delay(self) -> float:
        return self.ROUND_DELAY_MS / 1000.0

    @property
    def readiness_poll_interval(self) -> float:
        return self.READINESS_POLL_MS / 1000.0

    def get_log_config(self) -> dict:
        """Get logging configuration for logging.config.dictConfig"""
        handlers = {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "filters": ["correlation"],
                "stream": "ext://sys.stdout"
            }
        }
        if self.LOG_FILE:
            handlers["file"] = {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "default",
                "filters": ["correlation"],
                "filename": self.LOG_FILE,
                "maxBytes": 10 * 1024 * 1024,
                "backupCount": 3
            }

        return {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "correlation": {
                    "()": "src.middleware.correlation.CorrelationIdFilter"
                }
            },
            "formatters": {
                "default": {
                    "format": "%(asctime)s [%(levelname)s] [corr-id:%(correlation_id)s] %(name)s: %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S"
                }
            },
            "handlers": handlers,
            "root": {
                "level": self.LOG_LEVEL,
                "handlers": list(handlers)
            }
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


def configure_logging(level: Optional[str] = None):
    """Apply the logging configuration from settings"""
    config = get_settings().get_log_config()
    if level:
        config["root"]["level"] = level
    logging.config.dictConfig(config)


# Global settings instance
settings = get_settings()
