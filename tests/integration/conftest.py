#!/usr/bin/env python3
"""
Integration Test Configuration

Runs repository code against a real PostgreSQL. Every test here is marked
requires_db and is skipped unless CAMPAIGN_TEST_POSTGRES_HOST is set.
"""

import os
import sys

import pytest
import pytest_asyncio

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../.."))

from core.config import InfraConfig, PlatformConfig
from core.config_manager import ConfigManager
from microservices.campaign_service.campaign_repository import CampaignRepository


def integration_config() -> ConfigManager:
    infra = InfraConfig(
        postgres_host=os.getenv("CAMPAIGN_TEST_POSTGRES_HOST", "localhost"),
        postgres_port=int(os.getenv("CAMPAIGN_TEST_POSTGRES_PORT", "5432")),
        postgres_db=os.getenv("CAMPAIGN_TEST_POSTGRES_DB", "postgres"),
        postgres_user=os.getenv("CAMPAIGN_TEST_POSTGRES_USER", "postgres"),
        postgres_password=os.getenv("CAMPAIGN_TEST_POSTGRES_PASSWORD", "postgres"),
    )
    return ConfigManager("campaign_service", settings=PlatformConfig(infrastructure=infra))


@pytest_asyncio.fixture
async def pg_repository():
    """Migrated CampaignRepository on the test database"""
    repository = CampaignRepository(integration_config(), auto_migrate=True)
    await repository.initialize()
    yield repository
    await repository.close()


def pytest_collection_modifyitems(config, items):
    here = os.path.dirname(os.path.abspath(__file__))
    for item in items:
        if str(item.path).startswith(here):
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.requires_db)
