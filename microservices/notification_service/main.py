"""
Notification Service Main Application

FastAPI application for templates, campaigns, delivery tracking and
birthday/anniversary emails.
Port: 8206
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from core.config import configure_logging, get_settings

from .factory import NotificationServiceFactory
from .models import (
    AnalyticsReport,
    AudienceFilter,
    AudiencePreviewResponse,
    Campaign,
    CampaignCategory,
    CampaignCreateRequest,
    CampaignListResponse,
    CampaignStatus,
    Channel,
    DeleteResponse,
    DeliveryStatusUpdateRequest,
    DispatchResult,
    EmailCheckRequest,
    EmailLogListResponse,
    EmailLogStatus,
    HealthResponse,
    JobRunResponse,
    LivenessResponse,
    Notification,
    NotificationPreference,
    PreferenceUpdateRequest,
    ReadinessResponse,
    SchedulerStatusResponse,
    SendNotificationRequest,
    SpecialDayServiceStatus,
    SpecialDaySummary,
    SpecialDayType,
    TargetAudience,
    Template,
    TemplateCreateRequest,
    TemplateListResponse,
    TemplateUpdateRequest,
    Trigger,
    TriggerCreateRequest,
    TriggerListResponse,
    TriggerType,
    UpcomingSpecialDaysResponse,
)
from .protocols import (
    ChannelConfigurationError,
    ChannelDeliveryError,
    InvalidCampaignStateError,
    InvalidNotificationTransitionError,
    NotificationValidationError,
    ResourceConflictError,
    ResourceNotFoundError,
    StoreUnavailableError,
    TemplateInUseError,
)

logger = logging.getLogger(__name__)

settings = get_settings()

# Service configuration
SERVICE_NAME = settings.service_name
SERVICE_PORT = settings.service_port
SERVICE_VERSION = "1.0.0"
API_PREFIX = "/api/v1/notifications"

# Track startup time for uptime calculation
startup_time = time.time()

# Global factory instance
factory: Optional[NotificationServiceFactory] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global factory

    configure_logging(settings.logging)
    logger.info(f"Starting {SERVICE_NAME} on port {SERVICE_PORT} ({settings.environment})")

    factory = NotificationServiceFactory(settings)
    await factory.initialize()

    yield

    # Cleanup
    logger.info(f"Shutting down {SERVICE_NAME}")
    await factory.close()
    factory = None


# Create FastAPI application
app = FastAPI(
    title="Notification Service",
    description="Notification templates, campaigns, scheduled dispatch and delivery analytics",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


# ====================
# Exception Handlers
# ====================


@app.exception_handler(NotificationValidationError)
async def validation_error_handler(request: Request, exc: NotificationValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc), "fields": exc.fields},
    )


@app.exception_handler(ResourceNotFoundError)
async def not_found_handler(request: Request, exc: ResourceNotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc)},
    )


@app.exception_handler(TemplateInUseError)
async def template_in_use_handler(request: Request, exc: TemplateInUseError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "detail": str(exc),
            "campaign_count": exc.campaign_count,
            "trigger_count": exc.trigger_count,
        },
    )


@app.exception_handler(ResourceConflictError)
async def conflict_handler(request: Request, exc: ResourceConflictError):
    content = {"detail": str(exc)}
    if isinstance(exc, (InvalidCampaignStateError, InvalidNotificationTransitionError)) and exc.current_status:
        content["current_status"] = exc.current_status.value
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=content)


@app.exception_handler(ChannelDeliveryError)
async def channel_delivery_handler(request: Request, exc: ChannelDeliveryError):
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": str(exc)},
    )


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc)},
    )


@app.exception_handler(ChannelConfigurationError)
async def channel_configuration_handler(request: Request, exc: ChannelConfigurationError):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all: full traceback to the log, generic body to the client"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# ====================
# Dependencies
# ====================


def get_optional_factory() -> Optional[NotificationServiceFactory]:
    """Factory if started (health endpoints work without one)"""
    return factory


def get_factory(
    current: Optional[NotificationServiceFactory] = Depends(get_optional_factory),
) -> NotificationServiceFactory:
    """Get initialized factory"""
    if not current:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return current


def get_auth_context(request: Request) -> dict:
    """Extract auth context from gateway-injected headers"""
    return {
        "user_id": request.headers.get("X-User-ID", "system"),
        "role": request.headers.get("X-User-Role", "user"),
    }


def require_admin(auth: dict = Depends(get_auth_context)) -> dict:
    if auth["role"] != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return auth


# ====================
# Health Endpoints
# ====================


@app.get(f"{API_PREFIX}/health", response_model=HealthResponse, tags=["Health"])
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(current: Optional[NotificationServiceFactory] = Depends(get_optional_factory)):
    """Health check endpoint"""
    dependencies = {}

    if current:
        try:
            db_healthy = await current.repository.health_check()
            dependencies["postgres"] = "healthy" if db_healthy else "unhealthy"
        except Exception:
            dependencies["postgres"] = "unhealthy"

        event_bus = current.event_bus
        if event_bus is None:
            dependencies["nats"] = "not_configured"
        else:
            dependencies["nats"] = "healthy" if getattr(event_bus, "is_connected", True) else "unhealthy"

        dependencies["email"] = current.dispatcher.email_sender.name
        dependencies["scheduler"] = "running" if current.scheduler.running else "stopped"

    return HealthResponse(
        status="healthy",
        service=SERVICE_NAME,
        port=SERVICE_PORT,
        version=SERVICE_VERSION,
        dependencies=dependencies,
    )


@app.get("/health/ready", response_model=ReadinessResponse, tags=["Health"])
async def readiness_check(current: Optional[NotificationServiceFactory] = Depends(get_optional_factory)):
    """Readiness check endpoint"""
    checks = {}
    details = {}

    if current:
        try:
            db_healthy = await current.repository.health_check()
            checks["database"] = db_healthy
            details["database"] = "Connected" if db_healthy else "Connection failed"
        except Exception as e:
            checks["database"] = False
            details["database"] = str(e)

        if current.event_bus is None:
            checks["nats"] = True  # Optional
            details["nats"] = "Not configured (optional)"
        else:
            connected = bool(getattr(current.event_bus, "is_connected", True))
            checks["nats"] = connected
            details["nats"] = "Connected" if connected else "Disconnected"
    else:
        checks["factory"] = False
        details["factory"] = "Factory not initialized"

    ready = all(checks.get(k, False) for k in ["database"])

    return ReadinessResponse(ready=ready, checks=checks, details=details)


@app.get("/health/live", response_model=LivenessResponse, tags=["Health"])
async def liveness_check():
    """Liveness check endpoint"""
    return LivenessResponse(alive=True, uptime_seconds=time.time() - startup_time)


# ====================
# Template Endpoints
# ====================


@app.post(
    f"{API_PREFIX}/templates",
    response_model=Template,
    status_code=status.HTTP_201_CREATED,
    tags=["Templates"],
)
async def create_template(
    request: TemplateCreateRequest,
    components: NotificationServiceFactory = Depends(get_factory),
):
    """Create a message template"""
    return await components.service.create_template(request)


@app.get(f"{API_PREFIX}/templates", response_model=TemplateListResponse, tags=["Templates"])
async def list_templates(
    channel: Optional[Channel] = Query(None, description="Filter by channel"),
    components: NotificationServiceFactory = Depends(get_factory),
):
    """List active templates, newest first"""
    templates = await components.service.list_templates(channel)
    return TemplateListResponse(templates=templates, total=len(templates))


@app.get(f"{API_PREFIX}/templates/{{template_id}}", response_model=Template, tags=["Templates"])
async def get_template(
    template_id: str,
    components: NotificationServiceFactory = Depends(get_factory),
):
    return await components.service.get_template(template_id)


@app.put(f"{API_PREFIX}/templates/{{template_id}}", response_model=Template, tags=["Templates"])
async def update_template(
    template_id: str,
    request: TemplateUpdateRequest,
    components: NotificationServiceFactory = Depends(get_factory),
):
    """Partially update a template"""
    return await components.service.update_template(template_id, request)


@app.delete(f"{API_PREFIX}/templates/{{template_id}}", response_model=DeleteResponse, tags=["Templates"])
async def delete_template(
    template_id: str,
    components: NotificationServiceFactory = Depends(get_factory),
):
    """
    Deactivate a template

    Refused with 409 while draft/scheduled/sending campaigns or active
    triggers reference it.
    """
    await components.service.delete_template(template_id)
    return DeleteResponse(message=f"Template {template_id} deactivated")


@app.delete(f"{API_PREFIX}/templates/{{template_id}}/hard", response_model=DeleteResponse, tags=["Templates"])
async def hard_delete_template(
    template_id: str,
    components: NotificationServiceFactory = Depends(get_factory),
    auth: dict = Depends(require_admin),
):
    """Permanently delete a template (admin only)"""
    await components.service.hard_delete_template(template_id)
    logger.info(f"Template {template_id} hard-deleted by {auth['user_id']}")
    return DeleteResponse(message=f"Template {template_id} permanently deleted")


# ====================
# Campaign Endpoints
# ====================


@app.post(
    f"{API_PREFIX}/campaigns",
    response_model=Campaign,
    status_code=status.HTTP_201_CREATED,
    tags=["Campaigns"],
)
async def create_campaign(
    request: CampaignCreateRequest,
    components: NotificationServiceFactory = Depends(get_factory),
    auth: dict = Depends(get_auth_context),
):
    """Create a campaign (scheduled when scheduled_at is given, draft otherwise)"""
    return await components.campaign_manager.create_campaign(request, created_by=auth["user_id"])


@app.get(f"{API_PREFIX}/campaigns", response_model=CampaignListResponse, tags=["Campaigns"])
async def list_campaigns(
    status_filter: Optional[CampaignStatus] = Query(None, alias="status", description="Filter by status"),
    category: Optional[CampaignCategory] = Query(None, description="Filter by category"),
    target_audience: Optional[TargetAudience] = Query(None, description="Filter by audience"),
    limit: int = Query(50, ge=1, le=200, description="Page size"),
    offset: int = Query(0, ge=0, description="Page offset"),
    components: NotificationServiceFactory = Depends(get_factory),
):
    """List campaigns, newest first"""
    campaigns, total = await components.campaign_manager.list_campaigns(
        status=status_filter,
        category=category,
        target_audience=target_audience.value if target_audience else None,
        limit=limit,
        offset=offset,
    )
    return CampaignListResponse(campaigns=campaigns, total=total, limit=limit, offset=offset)


@app.get(f"{API_PREFIX}/campaigns/{{campaign_id}}", response_model=Campaign, tags=["Campaigns"])
async def get_campaign(
    campaign_id: str,
    components: NotificationServiceFactory = Depends(get_factory),
):
    return await components.campaign_manager.get_campaign(campaign_id)


@app.post(f"{API_PREFIX}/campaigns/{{campaign_id}}/send", response_model=Campaign, tags=["Campaigns"])
async def send_campaign(
    campaign_id: str,
    components: NotificationServiceFactory = Depends(get_factory),
    auth: dict = Depends(get_auth_context),
):
    """
    Send a draft or scheduled campaign now

    409 when the campaign is already sending, sent or failed.
    """
    logger.info(f"Campaign {campaign_id} send requested by {auth['user_id']}")
    return await components.campaign_manager.send_campaign(campaign_id)


# ====================
# Analytics
# ====================


@app.get(f"{API_PREFIX}/analytics", response_model=AnalyticsReport, tags=["Analytics"])
async def get_analytics(
    period: int = Query(30, description="Trailing window in days (1-365)"),
    components: NotificationServiceFactory = Depends(get_factory),
):
    return await components.analytics.report(period)


# ====================
# Triggers
# ====================


@app.post(
    f"{API_PREFIX}/triggers",
    response_model=Trigger,
    status_code=status.HTTP_201_CREATED,
    tags=["Triggers"],
)
async def create_trigger(
    request: TriggerCreateRequest,
    components: NotificationServiceFactory = Depends(get_factory),
):
    return await components.service.create_trigger(request)


@app.get(f"{API_PREFIX}/triggers", response_model=TriggerListResponse, tags=["Triggers"])
async def list_triggers(
    trigger_type: Optional[TriggerType] = Query(None, description="Filter by trigger type"),
    components: NotificationServiceFactory = Depends(get_factory),
):
    triggers = await components.service.list_triggers(trigger_type)
    return TriggerListResponse(triggers=triggers, total=len(triggers))


# ====================
# Preferences & audience
# ====================


@app.get(
    f"{API_PREFIX}/preferences/{{customer_id}}",
    response_model=NotificationPreference,
    tags=["Preferences"],
)
async def get_preferences(
    customer_id: str,
    components: NotificationServiceFactory = Depends(get_factory),
):
    """Stored preferences, or the opted-in default (is_default=true)"""
    return await components.service.get_preferences(customer_id)


@app.put(
    f"{API_PREFIX}/preferences/{{customer_id}}",
    response_model=NotificationPreference,
    tags=["Preferences"],
)
async def update_preferences(
    customer_id: str,
    request: PreferenceUpdateRequest,
    components: NotificationServiceFactory = Depends(get_factory),
):
    return await components.service.update_preferences(customer_id, request)


@app.post(f"{API_PREFIX}/audience/preview", response_model=AudiencePreviewResponse, tags=["Audience"])
async def preview_audience(
    audience: AudienceFilter,
    components: NotificationServiceFactory = Depends(get_factory),
):
    """Customers an audience filter currently selects"""
    customers = await components.service.preview_audience(audience)
    return AudiencePreviewResponse(customers=customers, total=len(customers))


# ====================
# Special days
# ====================


@app.post(f"{API_PREFIX}/special-days/test", response_model=SpecialDayServiceStatus, tags=["Special Days"])
async def test_special_day_service(components: NotificationServiceFactory = Depends(get_factory)):
    """Email transport check and today's birthday/anniversary counts"""
    return await components.special_days.test_service()


@app.post(f"{API_PREFIX}/special-days/trigger", response_model=SpecialDaySummary, tags=["Special Days"])
async def trigger_special_day_emails(
    components: NotificationServiceFactory = Depends(get_factory),
    auth: dict = Depends(get_auth_context),
):
    """Run today's birthday and anniversary emails now"""
    logger.info(f"Special-day emails triggered manually by {auth['user_id']}")
    return await components.special_days.send_all_special_day_emails()


@app.get(
    f"{API_PREFIX}/special-days/upcoming",
    response_model=UpcomingSpecialDaysResponse,
    tags=["Special Days"],
)
async def upcoming_special_days(
    days: int = Query(7, description="Look-ahead window in days (1-365)"),
    components: NotificationServiceFactory = Depends(get_factory),
):
    upcoming = await components.special_days.upcoming_special_days(days)
    return UpcomingSpecialDaysResponse(days=days, total=len(upcoming), upcoming=upcoming)


@app.get(
    f"{API_PREFIX}/special-days/email-logs",
    response_model=EmailLogListResponse,
    tags=["Special Days"],
)
async def list_email_logs(
    page: int = Query(1, description="Page number (1-based)"),
    limit: int = Query(50, description="Page size"),
    email_type: Optional[SpecialDayType] = Query(None, description="birthday or anniversary"),
    status_filter: Optional[EmailLogStatus] = Query(None, alias="status", description="success or failed"),
    components: NotificationServiceFactory = Depends(get_factory),
):
    return await components.special_days.list_email_logs(
        page=page, limit=limit, email_type=email_type, status=status_filter
    )


# ====================
# Scheduler
# ====================


@app.get(f"{API_PREFIX}/scheduler/status", response_model=SchedulerStatusResponse, tags=["Scheduler"])
async def scheduler_status(components: NotificationServiceFactory = Depends(get_factory)):
    scheduler = components.scheduler
    return SchedulerStatusResponse(running=scheduler.running, jobs=scheduler.status())


@app.post(f"{API_PREFIX}/scheduler/restart", response_model=SchedulerStatusResponse, tags=["Scheduler"])
async def restart_scheduler(
    components: NotificationServiceFactory = Depends(get_factory),
    auth: dict = Depends(get_auth_context),
):
    scheduler = components.scheduler
    await scheduler.restart()
    logger.info(f"Scheduler restarted by {auth['user_id']}")
    return SchedulerStatusResponse(running=scheduler.running, jobs=scheduler.status())


@app.post(
    f"{API_PREFIX}/scheduler/jobs/{{job_name}}/run",
    response_model=JobRunResponse,
    tags=["Scheduler"],
)
async def run_scheduler_job(
    job_name: str,
    components: NotificationServiceFactory = Depends(get_factory),
):
    """Run a registered job immediately"""
    result = await components.scheduler.run_job(job_name)
    return JobRunResponse(
        job=components.scheduler.job_status(job_name),
        result=result.model_dump(mode="json") if hasattr(result, "model_dump") else result,
    )


# ====================
# One-off sends & delivery receipts
# ====================


@app.post(f"{API_PREFIX}/test-email", response_model=DispatchResult, tags=["Notifications"])
async def send_test_email(
    request: EmailCheckRequest,
    components: NotificationServiceFactory = Depends(get_factory),
):
    """Send a test email through the configured transport (502 on failure)"""
    return await components.service.send_test_email(request)


@app.post(
    f"{API_PREFIX}/send",
    response_model=Notification,
    status_code=status.HTTP_201_CREATED,
    tags=["Notifications"],
)
async def send_notification(
    request: SendNotificationRequest,
    components: NotificationServiceFactory = Depends(get_factory),
):
    """Send a single notification outside any campaign"""
    return await components.service.send_notification(request)


@app.post(f"{API_PREFIX}/{{notification_id}}/status", response_model=Notification, tags=["Notifications"])
async def update_delivery_status(
    notification_id: str,
    request: DeliveryStatusUpdateRequest,
    components: NotificationServiceFactory = Depends(get_factory),
):
    """
    Record a delivery receipt

    Status only moves forward (queued, sent, delivered, opened, clicked);
    failed is accepted from queued or sent.
    """
    return await components.delivery_tracker.advance_status(notification_id, request)


# ====================
# Main Entry Point
# ====================


def main():
    """Run the service"""
    import uvicorn

    uvicorn.run(
        "microservices.notification_service.main:app",
        host=settings.service_host,
        port=SERVICE_PORT,
        reload=settings.debug,
        log_level="info",
    )


if __name__ == "__main__":
    main()
