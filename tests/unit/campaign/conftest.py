"""
Unit Test Fixtures for Campaign Service

Pure-logic fixtures: no store, no event loop work, no network.
Uses CampaignTestDataFactory from the data contract.
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.contracts.campaign.data_contract import CampaignTestDataFactory, FIXED_NOW


@pytest.fixture
def factory():
    """Test data factory"""
    return CampaignTestDataFactory()


@pytest.fixture
def fixed_clock():
    """Clock pinned to FIXED_NOW for date-relative rules"""
    return lambda: FIXED_NOW
