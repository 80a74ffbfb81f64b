"""Summary: FastAPI application for Mailcast.

Importance: Exposes HTTP endpoints for publishing, dispatch inspection, retries, and unsubscribes.
Alternatives: Expose the services through an admin UI only.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mailcast.app import build_services
from mailcast.config import AppConfig
from mailcast.delivery import DeliveryChannel
from mailcast.directory import RecipientFilter
from mailcast.errors import InternalError, MailcastError, NotFoundError, ValidationError
from mailcast.events import EventContext
from mailcast.jobs import JobRunner
from mailcast.models import ContentItem, Recipient


ERROR_STATUS = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (InternalError, 500),
)


class RecipientCreateRequest(BaseModel):
    """Summary: Request payload for adding a recipient.

    Importance: Keeps directory inputs explicit for API clients.
    Alternatives: Import recipients only from CSV files.
    """

    email: str
    name: str = ""
    subscribed: bool = True
    paid: bool = False


class ContentCreateRequest(BaseModel):
    """Summary: Request payload for content creation.

    Importance: Content items are the source of every dispatch.
    Alternatives: Pull content from an external CMS.
    """

    title: str = Field(min_length=1)
    html: str
    plaintext: str = ""
    visibility: str = "public"


class PublishRequest(BaseModel):
    """Summary: Request payload for publishing content.

    Importance: Lets importers publish historical content without sending it.
    Alternatives: Provide a separate import endpoint.
    """

    importing: bool = False


class TestEmailRequest(BaseModel):
    """Request payload for sending a test email."""

    emails: list[str] = Field(min_length=1, max_length=10)


def create_app(
    config: AppConfig,
    jobs: JobRunner | None = None,
    channel: DeliveryChannel | None = None,
) -> FastAPI:
    """Summary: Create a FastAPI app wired to Mailcast services.

    Importance: Tests inject an inline job runner and a mock channel through this factory.
    Alternatives: Build services at import time from the environment.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    services = build_services(config, jobs=jobs, channel=channel)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        services.close()

    app = FastAPI(title="Mailcast API", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(MailcastError)
    def handle_mailcast_error(request: Request, exc: MailcastError) -> JSONResponse:
        """Summary: Translate domain errors into HTTP responses.

        Importance: Keeps not-found, invalid input, and internal failures distinguishable.
        Alternatives: Catch errors in every endpoint.
        """

        status_code = next(
            (code for error_type, code in ERROR_STATUS if isinstance(exc, error_type)), 500
        )
        return JSONResponse(status_code=status_code, content={"detail": exc.message})

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        """Reject requests without the configured `X-API-Key`; open when no key is set."""

        if not config.api_key:
            return
        if x_api_key != config.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/recipients", dependencies=[Depends(require_api_key)])
    def add_recipient(payload: RecipientCreateRequest) -> dict[str, Any]:
        recipient = services.directory.add(
            Recipient(
                email=payload.email,
                name=payload.name,
                subscribed=payload.subscribed,
                paid=payload.paid,
            )
        )
        return recipient.to_dict()

    @app.get("/recipients", dependencies=[Depends(require_api_key)])
    def list_recipients(
        subscribed: bool | None = None, paid: bool | None = None, limit: int = 50
    ) -> dict[str, Any]:
        """Summary: List recipients with the total match count.

        Importance: Lets clients preview the audience of a dispatch.
        Alternatives: Return only counts.
        """

        page = services.directory.list(
            RecipientFilter(subscribed=subscribed, paid=paid, limit=limit)
        )
        return {"items": [item.to_dict() for item in page.items], "total": page.total}

    @app.post("/content", dependencies=[Depends(require_api_key)])
    def create_content(payload: ContentCreateRequest) -> dict[str, Any]:
        content = services.content.create(
            ContentItem(
                title=payload.title,
                html=payload.html,
                plaintext=payload.plaintext,
                visibility=payload.visibility,
            )
        )
        return asdict(content)

    @app.post("/content/{content_id}/publish", dependencies=[Depends(require_api_key)])
    def publish_content(content_id: int, payload: PublishRequest | None = None) -> dict[str, Any]:
        """Summary: Publish content and create its dispatch record.

        Importance: The response returns as soon as the send is enqueued.
        Alternatives: Block until the send completes.
        """

        context = EventContext(importing=payload.importing if payload else False)
        record = services.content.publish(content_id, context)
        return {"dispatch": record.to_dict() if record else None}

    @app.post("/content/{content_id}/test-email", dependencies=[Depends(require_api_key)])
    def send_test_email(content_id: int, payload: TestEmailRequest) -> dict[str, Any]:
        content = services.content.get(content_id)
        outcomes = services.dispatcher.send_test(content, payload.emails)
        return {"batches": [outcome.to_dict() for outcome in outcomes]}

    @app.get("/dispatches/{dispatch_id}", dependencies=[Depends(require_api_key)])
    def get_dispatch(dispatch_id: int) -> dict[str, Any]:
        return services.manager.get(dispatch_id).to_dict()

    @app.get("/dispatches/{dispatch_id}/batches", dependencies=[Depends(require_api_key)])
    def list_batches(dispatch_id: int) -> list[dict[str, Any]]:
        """Summary: List recipient batches stored for a dispatch.

        Importance: Shows who each attempt targeted, batch by batch.
        Alternatives: Return a flat recipient list.
        """

        services.manager.get(dispatch_id)
        return [asdict(batch) for batch in services.snapshots.batches(dispatch_id)]

    @app.post("/dispatches/{dispatch_id}/retry", dependencies=[Depends(require_api_key)])
    def retry_dispatch(dispatch_id: int) -> dict[str, Any]:
        """Summary: Re-arm a failed dispatch.

        Importance: Retries re-send to the whole audience of the content item.
        Alternatives: Resume only the failed transport batches.
        """

        return services.manager.retry_failed(dispatch_id).to_dict()

    @app.get("/unsubscribe/")
    def unsubscribe(request: Request) -> dict[str, Any]:
        """Summary: Unsubscribe the recipient named in the link.

        Importance: Unsubscribe links work without an API key.
        Alternatives: Require a signed token per link.
        """

        return services.unsubscribe.handle(dict(request.query_params))

    return app
