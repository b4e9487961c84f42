"""
Campaign Service

Audience segmentation and campaign delivery microservice providing:
- Rule-based customer segments with audience preview
- Campaign creation with a frozen recipient snapshot
- Background fan-out to a messaging vendor
- Batched application of asynchronous delivery receipts
- Per-campaign delivery statistics

Port: 8240
"""

__version__ = "1.0.0"
__service__ = "campaign_service"
