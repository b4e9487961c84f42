"""
Campaign Service Main Application

FastAPI application for audience segmentation and campaign delivery.
Port: 8240
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from core.config_manager import ConfigManager

from .factory import CampaignServiceFactory
from .models import (
    AudiencePreview,
    CampaignCreateRequest,
    CampaignListResponse,
    CampaignResponse,
    Customer,
    CustomerBulkCreateRequest,
    CustomerBulkCreateResponse,
    CustomerCreateRequest,
    CustomerDetailResponse,
    CustomerListResponse,
    CustomerUpdateRequest,
    DeliveryLogListResponse,
    DeliveryReceipt,
    DeliveryStats,
    DeliveryStatus,
    HealthResponse,
    LivenessResponse,
    OrderCreateRequest,
    OrderListResponse,
    OrderResponse,
    ReadinessResponse,
    ReceiptAck,
    SegmentCreateRequest,
    SegmentCustomersResponse,
    SegmentListResponse,
    SegmentPreviewRequest,
    SegmentResponse,
    SegmentUpdateRequest,
)
from .protocols import (
    CampaignNotFoundError,
    CampaignValidationError,
    CustomerNotFoundError,
    DeliveryLogWriteError,
    ReceiptQueueFullError,
    SegmentNotFoundError,
    SegmentRuleError,
)

# Service configuration
SERVICE_NAME = "campaign_service"
SERVICE_VERSION = "1.0.0"

config = ConfigManager(SERVICE_NAME)
SERVICE_PORT = config.service_port

# Configure logging
logging.basicConfig(
    level=config.logging.level,
    format=config.logging.log_format,
)
logger = logging.getLogger(__name__)

# Track startup time for uptime calculation
startup_time = time.time()

# Global factory instance
factory: Optional[CampaignServiceFactory] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global factory

    logger.info(f"Starting {SERVICE_NAME} ({config.environment.value}) on port {SERVICE_PORT}")

    # Initialize factory
    factory = CampaignServiceFactory(config)
    await factory.initialize()

    yield

    # Cleanup
    logger.info(f"Shutting down {SERVICE_NAME}")
    await factory.close()
    factory = None


# Create FastAPI application
app = FastAPI(
    title="Campaign Service",
    description="Audience segmentation and campaign delivery with asynchronous vendor receipts",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


# ====================
# Exception Handlers
# ====================


@app.exception_handler(CustomerNotFoundError)
async def customer_not_found_handler(request: Request, exc: CustomerNotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc)},
    )


@app.exception_handler(SegmentNotFoundError)
async def segment_not_found_handler(request: Request, exc: SegmentNotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc)},
    )


@app.exception_handler(CampaignNotFoundError)
async def campaign_not_found_handler(request: Request, exc: CampaignNotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc)},
    )


@app.exception_handler(SegmentRuleError)
async def segment_rule_handler(request: Request, exc: SegmentRuleError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc), "condition_index": exc.condition_index},
    )


@app.exception_handler(CampaignValidationError)
async def validation_error_handler(request: Request, exc: CampaignValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc), "field": exc.field},
    )


@app.exception_handler(ReceiptQueueFullError)
async def receipt_queue_full_handler(request: Request, exc: ReceiptQueueFullError):
    logger.warning(f"Rejecting receipt: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc)},
        headers={"Retry-After": "5"},
    )


@app.exception_handler(DeliveryLogWriteError)
async def delivery_log_write_handler(request: Request, exc: DeliveryLogWriteError):
    logger.error(f"Delivery log write failed: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "type": type(exc).__name__},
    )


# ====================
# Dependencies
# ====================


def get_service():
    """Get campaign service from factory"""
    if not factory:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return factory.service


def get_user_id(request: Request) -> str:
    """Caller identity from the gateway header"""
    return request.headers.get("X-User-ID", "system")


# ====================
# Health Endpoints
# ====================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint"""
    dependencies = {}

    if factory:
        try:
            db_healthy = await factory.repository.health_check()
            dependencies["store"] = "healthy" if db_healthy else "unhealthy"
        except Exception:
            dependencies["store"] = "unhealthy"

        if factory.nats_client:
            dependencies["nats"] = "healthy" if factory.nats_client.is_connected else "unhealthy"
        else:
            dependencies["nats"] = "not_configured"

        dependencies["receipt_queue"] = str(factory.batch_updater.pending)

    return HealthResponse(
        status="healthy",
        service=SERVICE_NAME,
        port=SERVICE_PORT,
        version=SERVICE_VERSION,
        dependencies=dependencies,
    )


@app.get("/health/ready", response_model=ReadinessResponse, tags=["Health"])
async def readiness_check():
    """Readiness check endpoint"""
    checks = {}
    details = {}

    if factory:
        try:
            db_healthy = await factory.repository.health_check()
            checks["database"] = db_healthy
            details["database"] = "Connected" if db_healthy else "Connection failed"
        except Exception as e:
            checks["database"] = False
            details["database"] = str(e)

        checks["batch_updater"] = factory.batch_updater.running or not factory.start_background
        details["batch_updater"] = f"{factory.batch_updater.pending} receipts pending"

        if factory.nats_client:
            checks["nats"] = factory.nats_client.is_connected
            details["nats"] = "Connected" if factory.nats_client.is_connected else "Disconnected"
        else:
            checks["nats"] = True  # Optional
            details["nats"] = "Not configured (optional)"
    else:
        checks["factory"] = False
        details["factory"] = "Factory not initialized"

    ready = all(checks.get(k, False) for k in ["database", "batch_updater"])

    return ReadinessResponse(
        ready=ready,
        checks=checks,
        details=details,
    )


@app.get("/health/live", response_model=LivenessResponse, tags=["Health"])
async def liveness_check():
    """Liveness check endpoint"""
    return LivenessResponse(
        alive=True,
        uptime_seconds=time.time() - startup_time,
    )


# ====================
# Customer Endpoints
# ====================


@app.post(
    "/api/v1/customers",
    response_model=Customer,
    status_code=status.HTTP_201_CREATED,
    tags=["Customers"],
)
async def create_customer(request: CustomerCreateRequest, service=Depends(get_service)):
    """Add a customer to the population"""
    return await service.create_customer(request)


@app.get("/api/v1/customers", response_model=CustomerListResponse, tags=["Customers"])
async def list_customers(service=Depends(get_service)):
    """List customers"""
    customers = await service.list_customers()
    return CustomerListResponse(customers=customers, total=len(customers))


@app.post(
    "/api/v1/customers/bulk",
    response_model=CustomerBulkCreateResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Customers"],
)
async def bulk_create_customers(request: CustomerBulkCreateRequest, service=Depends(get_service)):
    """Import customers; a single invalid or duplicate entry rejects the whole batch"""
    customers = await service.bulk_create_customers(request)
    return CustomerBulkCreateResponse(customers=customers, total=len(customers))


@app.get(
    "/api/v1/customers/{customer_id}",
    response_model=CustomerDetailResponse,
    tags=["Customers"],
)
async def get_customer(customer_id: str, service=Depends(get_service)):
    """Get customer with order history"""
    customer, orders = await service.get_customer_detail(customer_id)
    return CustomerDetailResponse(customer=customer, orders=orders)


@app.patch("/api/v1/customers/{customer_id}", response_model=Customer, tags=["Customers"])
async def update_customer(
    customer_id: str,
    request: CustomerUpdateRequest,
    service=Depends(get_service),
):
    """Update a customer"""
    return await service.update_customer(customer_id, request)


@app.delete("/api/v1/customers/{customer_id}", tags=["Customers"])
async def delete_customer(customer_id: str, service=Depends(get_service)):
    """Delete a customer and their orders"""
    await service.delete_customer(customer_id)
    return {"success": True, "message": "Customer deleted successfully"}


@app.get(
    "/api/v1/customers/{customer_id}/orders",
    response_model=OrderListResponse,
    tags=["Customers"],
)
async def list_customer_orders(customer_id: str, service=Depends(get_service)):
    """Orders of a customer, newest first"""
    orders = await service.list_customer_orders(customer_id)
    return OrderListResponse(customer_id=customer_id, orders=orders, total=len(orders))


# ====================
# Order Endpoints
# ====================


@app.post(
    "/api/v1/orders",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Orders"],
)
async def create_order(request: OrderCreateRequest, service=Depends(get_service)):
    """Record an order; updates the customer's total spending and last visit"""
    order, customer = await service.create_order(request)
    return OrderResponse(order=order, customer=customer)


# ====================
# Segment Endpoints
# ====================


@app.post(
    "/api/v1/segments",
    response_model=SegmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Segments"],
)
async def create_segment(
    request: SegmentCreateRequest,
    service=Depends(get_service),
    user_id: str = Depends(get_user_id),
):
    """Create a segment; the matching audience size is cached on it"""
    segment = await service.create_segment(request, created_by=user_id)
    return SegmentResponse(segment=segment, message="Segment created successfully")


@app.get("/api/v1/segments", response_model=SegmentListResponse, tags=["Segments"])
async def list_segments(service=Depends(get_service)):
    """List segments"""
    segments = await service.list_segments()
    return SegmentListResponse(segments=segments, total=len(segments))


@app.post("/api/v1/segments/preview", response_model=AudiencePreview, tags=["Segments"])
async def preview_segment(request: SegmentPreviewRequest, service=Depends(get_service)):
    """Audience size and sample customers for rules that are not saved yet"""
    return await service.preview_segment(request)


@app.get("/api/v1/segments/{segment_id}", response_model=SegmentResponse, tags=["Segments"])
async def get_segment(segment_id: str, service=Depends(get_service)):
    """Get segment by ID"""
    segment = await service.get_segment(segment_id)
    return SegmentResponse(segment=segment)


@app.patch("/api/v1/segments/{segment_id}", response_model=SegmentResponse, tags=["Segments"])
async def update_segment(
    segment_id: str,
    request: SegmentUpdateRequest,
    service=Depends(get_service),
):
    """Update a segment"""
    segment = await service.update_segment(segment_id, request)
    return SegmentResponse(segment=segment, message="Segment updated successfully")


@app.delete("/api/v1/segments/{segment_id}", tags=["Segments"])
async def delete_segment(segment_id: str, service=Depends(get_service)):
    """Delete a segment"""
    await service.delete_segment(segment_id)
    return {"success": True, "message": "Segment deleted successfully"}


@app.get(
    "/api/v1/segments/{segment_id}/customers",
    response_model=SegmentCustomersResponse,
    tags=["Segments"],
)
async def get_segment_customers(segment_id: str, service=Depends(get_service)):
    """Customers currently matching the segment"""
    customers = await service.get_segment_customers(segment_id)
    return SegmentCustomersResponse(segment_id=segment_id, total=len(customers), customers=customers)


# ====================
# Campaign Endpoints
# ====================


@app.post(
    "/api/v1/campaigns",
    response_model=CampaignResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Campaigns"],
)
async def create_campaign(
    request: CampaignCreateRequest,
    service=Depends(get_service),
    user_id: str = Depends(get_user_id),
):
    """
    Create a campaign and start delivery.

    Responds once the campaign and its pending delivery logs are stored;
    messages go out in the background.
    """
    campaign = await service.create_campaign(request, created_by=user_id)
    return CampaignResponse(campaign=campaign, message="Campaign created and delivery started")


@app.get("/api/v1/campaigns", response_model=CampaignListResponse, tags=["Campaigns"])
async def list_campaigns(service=Depends(get_service)):
    """List campaigns"""
    campaigns = await service.list_campaigns()
    return CampaignListResponse(campaigns=campaigns, total=len(campaigns))


@app.get("/api/v1/campaigns/{campaign_id}", response_model=CampaignResponse, tags=["Campaigns"])
async def get_campaign(campaign_id: str, service=Depends(get_service)):
    """Get campaign by ID"""
    campaign = await service.get_campaign(campaign_id)
    return CampaignResponse(campaign=campaign)


@app.delete("/api/v1/campaigns/{campaign_id}", tags=["Campaigns"])
async def delete_campaign(campaign_id: str, service=Depends(get_service)):
    """Delete a campaign and its delivery logs"""
    await service.delete_campaign(campaign_id)
    return {"success": True, "message": "Campaign deleted successfully"}


@app.get("/api/v1/campaigns/{campaign_id}/stats", response_model=DeliveryStats, tags=["Campaigns"])
async def get_campaign_stats(campaign_id: str, service=Depends(get_service)):
    """Delivery counts derived from the campaign's logs"""
    return await service.get_campaign_stats(campaign_id)


@app.get(
    "/api/v1/campaigns/{campaign_id}/delivery-logs",
    response_model=DeliveryLogListResponse,
    tags=["Campaigns"],
)
async def list_delivery_logs(
    campaign_id: str,
    status_filter: Optional[DeliveryStatus] = Query(None, alias="status"),
    service=Depends(get_service),
):
    """Delivery logs of a campaign (optionally by status) plus stats"""
    return await service.list_delivery_logs(campaign_id, status_filter)


# ====================
# Vendor Receipt Webhook
# ====================


@app.post(
    "/api/v1/communications/delivery-receipt",
    response_model=ReceiptAck,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Delivery"],
)
async def delivery_receipt(receipt: DeliveryReceipt, service=Depends(get_service)):
    """
    Accept a vendor delivery receipt.

    The receipt is queued and applied by the next batch flush. Redelivering
    a receipt is harmless. 503 means the queue is full and the vendor should
    retry later.
    """
    return await service.ingest_receipt(receipt)


# ====================
# Main Entry Point
# ====================


def main():
    """Run the service"""
    import uvicorn

    uvicorn.run(
        "microservices.campaign_service.main:app",
        host=config.service_host,
        port=SERVICE_PORT,
        reload=config.debug,
        log_level=config.logging.log_level.lower(),
    )


if __name__ == "__main__":
    main()
