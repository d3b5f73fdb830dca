import logging
import sys
from contextlib import asynccontextmanager
from typing import Annotated, Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .alert_ledger import AlertLedger
from .config import Settings
from .database import build_engine, build_session_factory
from .dispatcher import FcmV1Transport, LegacyMulticastTransport, PushDispatcher
from .exceptions import MissingActivityIdError, NotifierError, TokenAcquisitionError
from .log import setup_logging
from .pipeline import NotificationPipeline
from .schemas import ErrorResponse, NotifyRequest, NotifyResult
from .store import ActivityStore
from .token_provider import TokenProvider

logger = logging.getLogger(__name__)


def build_pipeline(settings: Settings,
                   http_client: httpx.AsyncClient,
                   store: ActivityStore) -> NotificationPipeline:
    """
    Wire the pipeline components from the process configuration.

    Raises:
        TokenAcquisitionError: If the service account credential is missing or malformed
        ValueError: If the legacy transport has no server key
    """
    token_provider = None
    if settings.push_transport == "legacy":
        if not settings.fcm_server_key:
            raise ValueError("FCM_SERVER_KEY not configured for the legacy transport")
        transport = LegacyMulticastTransport(
            http_client,
            settings.fcm_server_key,
            base_url=settings.fcm_base_url,
            timeout=settings.push_timeout_seconds,
        )
    else:
        try:
            service_account = settings.service_account_info()
        except ValueError as e:
            raise TokenAcquisitionError("Invalid service account credential", str(e)) from e
        token_provider = TokenProvider(
            service_account,
            http_client,
            token_url=settings.oauth_token_url,
            timeout=settings.token_timeout_seconds,
        )
        transport = FcmV1Transport(
            http_client,
            token_provider.project_id,
            base_url=settings.fcm_base_url,
            timeout=settings.push_timeout_seconds,
        )

    return NotificationPipeline(
        settings=settings,
        store=store,
        ledger=AlertLedger(store, lookup_fatal=settings.alert_lookup_fatal),
        dispatcher=PushDispatcher(transport),
        token_provider=token_provider,
    )


def get_pipeline(request: Request) -> NotificationPipeline:
    return request.app.state.pipeline


async def notifier_error_handler(request: Request, exc: NotifierError):
    if exc.status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc}")
    else:
        logger.warning(f"{request.url.path} rejected: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Invalid request body on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request body, activity_id required"},
    )


def create_app(settings: Optional[Settings] = None,
               pipeline: Optional[NotificationPipeline] = None) -> FastAPI:
    """
    Build the FastAPI application.

    When `pipeline` is not given it is built on startup from `settings`
    together with the shared HTTP client, and torn down on shutdown.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.pipeline is not None:
            yield
            return
        engine = build_engine(settings.resolved_database_url())
        try:
            async with httpx.AsyncClient() as http_client:
                store = ActivityStore(build_session_factory(engine))
                app.state.pipeline = build_pipeline(settings, http_client, store)
                logger.info(f"{settings.service_name} started in {settings.environment} environment")
                yield
        finally:
            app.state.pipeline = None
            engine.dispose()

    app = FastAPI(title="Activity Notifier API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.pipeline = pipeline

    app.add_exception_handler(NotifierError, notifier_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    error_responses = {
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    }

    async def run_pipeline(pipeline: NotificationPipeline, body: NotifyRequest, field: str) -> NotifyResult:
        activity_id = body.resolved_activity_id()
        logger.info(f"Notification requested for activity {activity_id}")
        if activity_id is None:
            logger.warning(f"{field} not sent in the body")
            raise MissingActivityIdError(field)
        try:
            return await pipeline.notify_activity(activity_id)
        except NotifierError:
            raise
        except Exception as e:
            logger.error(f"Exception notifying activity {activity_id}: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=str(e) or type(e).__name__,
            )

    @app.post("/notify-new-activity", response_model=NotifyResult, responses=error_responses,
              tags=["Notifications"])
    async def notify_new_activity(
        body: NotifyRequest,
        pipeline: Annotated[NotificationPipeline, Depends(get_pipeline)],
    ):
        """
        Notify users near a newly created activity who prefer its sport
        """
        return await run_pipeline(pipeline, body, "activity_id")

    @app.post("/event-created", response_model=NotifyResult, responses=error_responses,
              tags=["Notifications"])
    async def event_created(
        body: NotifyRequest,
        pipeline: Annotated[NotificationPipeline, Depends(get_pipeline)],
    ):
        """
        Same fan-out, triggered by the activity-created database hook (body carries `id`)
        """
        return await run_pipeline(pipeline, body, "id")

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    return app


def main():
    """Main entry point for running the service locally."""
    import uvicorn

    settings = Settings()
    setup_logging(settings)
    logger.info(f"Starting {settings.service_name} in {settings.environment} environment")
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
