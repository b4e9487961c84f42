#!/usr/bin/env python3
"""
Centralized Configuration Manager

Per-service view over the platform configuration.

USAGE:
    from core.config_manager import ConfigManager

    config = ConfigManager("campaign_service")
    host, port = config.discover_service(
        service_name="postgres_service",
        default_host="localhost",
        default_port=5432,
        env_host_key="POSTGRES_HOST",
        env_port_key="POSTGRES_PORT",
    )

Service discovery is environment driven: an explicit environment variable
wins, then `<SERVICE_NAME>_HOST` / `<SERVICE_NAME>_PORT`, then the default.
"""

import logging
import os
from enum import Enum
from typing import Dict, Optional, Tuple

from core.config import (
    DeliveryConfig,
    InfraConfig,
    LoggingConfig,
    PlatformConfig,
    get_settings,
)

logger = logging.getLogger(__name__)


class Environment(str, Enum):
    """Deployment environment"""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"

    @classmethod
    def _missing_(cls, value):
        aliases = {"dev": cls.DEVELOPMENT, "test": cls.TESTING, "prod": cls.PRODUCTION}
        if isinstance(value, str):
            return aliases.get(value.lower())
        return None


# Default ports per service (port registry)
SERVICE_PORTS: Dict[str, int] = {
    "campaign_service": 8240,
}


class ConfigManager:
    """Configuration manager for a single microservice"""

    def __init__(self, service_name: str, settings: Optional[PlatformConfig] = None):
        self.service_name = service_name
        self.settings = settings or get_settings()
        try:
            self.environment = Environment(self.settings.environment)
        except ValueError:
            self.environment = Environment.DEVELOPMENT

    # ====================
    # Sub-configs
    # ====================

    @property
    def logging(self) -> LoggingConfig:
        return self.settings.logging

    @property
    def infrastructure(self) -> InfraConfig:
        return self.settings.infrastructure

    @property
    def delivery(self) -> DeliveryConfig:
        return self.settings.delivery

    # ====================
    # Service identity
    # ====================

    @property
    def service_host(self) -> str:
        return os.getenv("SERVICE_HOST", self.settings.default_host)

    @property
    def service_port(self) -> int:
        default = SERVICE_PORTS.get(self.service_name, self.settings.default_port)
        try:
            return int(os.getenv("SERVICE_PORT", str(default)))
        except ValueError:
            logger.warning(f"Invalid SERVICE_PORT, falling back to {default}")
            return default

    @property
    def debug(self) -> bool:
        return self.settings.debug

    def discover_service(
        self,
        service_name: str,
        default_host: str = "localhost",
        default_port: int = 80,
        env_host_key: Optional[str] = None,
        env_port_key: Optional[str] = None,
    ) -> Tuple[str, int]:
        """
        Resolve host and port for a dependency.

        Returns:
            (host, port) tuple
        """
        prefix = service_name.upper()
        host = (
            (os.getenv(env_host_key) if env_host_key else None)
            or os.getenv(f"{prefix}_HOST")
            or default_host
        )
        raw_port = (
            (os.getenv(env_port_key) if env_port_key else None)
            or os.getenv(f"{prefix}_PORT")
        )
        try:
            port = int(raw_port) if raw_port else default_port
        except ValueError:
            logger.warning(f"Invalid port {raw_port!r} for {service_name}, using {default_port}")
            port = default_port

        logger.debug(f"Discovered {service_name} at {host}:{port}")
        return host, port


__all__ = ["ConfigManager", "Environment", "SERVICE_PORTS"]
