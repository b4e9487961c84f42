#!/usr/bin/env python3
"""
Core Module for Microservices Architecture

Shared infrastructure for the campaign delivery service.

COMPONENTS:
    - config/: Dataclass configuration loaded from environment (+ dotenv files)
    - config_manager.py: Per-service configuration view and service discovery
    - postgres_client.py: asyncpg pool wrapper
    - nats_client.py: NATS event bus for event-driven architecture

USAGE:
    from core.config_manager import ConfigManager

    # Initialize configuration for a service
    config = ConfigManager("campaign_service")
"""

from .config_manager import ConfigManager, Environment

# Export public API
__all__ = [
    "ConfigManager",
    "Environment",
]

__version__ = "2.0.0"
