#!/usr/bin/env python3
"""Modular configuration system

Configuration hierarchy:
- infra_config: Infrastructure services (PostgreSQL, NATS)
- delivery_config: Campaign delivery pipeline tunables
- logging_config: Logging configuration
- platform_config: Combines all of the above
"""
import os
from dotenv import load_dotenv
from .delivery_config import DeliveryConfig
from .infra_config import InfraConfig
from .logging_config import LoggingConfig
from .platform_config import PlatformConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)

# Create global settings instance
settings = PlatformConfig.from_env()

def get_settings() -> PlatformConfig:
    """Get global settings instance"""
    return settings

__all__ = [
    # Main config
    'PlatformConfig',
    'get_settings',
    'settings',
    # Sub-configs
    'LoggingConfig',
    'InfraConfig',
    'DeliveryConfig',
]
