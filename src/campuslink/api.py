"""Summary: FastAPI application for CampusLink messaging.

Importance: Exposes conversations, threads, and sends over HTTP for UI clients.
Alternatives: Use a CLI-only workflow or a different web framework.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import asdict
from typing import Any

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from campuslink.app import AppServices, build_context
from campuslink.config import AppConfig
from campuslink.errors import FetchFailed, MessageStoreError, MessagingError, NotAuthenticated
from campuslink.grouping import filter_by_user, group_by_user
from campuslink.models import MARKETPLACE, SCOPE_KINDS, Scope

# Per-caller services (and their last-good conversation cache) kept in memory.
USER_SERVICES_CACHE_SIZE = 256


class UserCreateRequest(BaseModel):
    """Summary: Request payload for user creation.

    Importance: Lets clients register students and employers.
    Alternatives: Mirror users from the auth provider only.
    """

    display_name: str
    email: str
    role: str = "student"


class JobCreateRequest(BaseModel):
    """Summary: Request payload for posting a job.

    Importance: Jobs anchor applications and thread titles.
    Alternatives: Import jobs from an external board.
    """

    title: str
    company: str = ""


class ProductCreateRequest(BaseModel):
    title: str
    price: float = Field(default=0.0, ge=0)


class ApplyRequest(BaseModel):
    """Summary: Request payload for a formal job application.

    Importance: Upgrades an earlier inquiry instead of duplicating it.
    Alternatives: Submit applications through a separate service.
    """

    cover_letter: str | None = None


class SendRequest(BaseModel):
    """Summary: Request payload for sending into an existing conversation.

    Importance: Marketplace sends must name the counterpart.
    Alternatives: Derive the counterpart from the last message.
    """

    text: str
    counterpart_id: int | None = None


class JobMessageRequest(BaseModel):
    """Summary: Request payload for messaging an employer about a job.

    Importance: Works before an application exists.
    Alternatives: Require applying first.
    """

    text: str
    application_id: int | None = None


class ProductMessageRequest(BaseModel):
    text: str


def _failure(error: MessagingError) -> HTTPException:
    if isinstance(error, NotAuthenticated):
        return HTTPException(status_code=401, detail=str(error))
    detail: dict[str, Any] = {"error": error.code, "message": str(error)}
    text = getattr(error, "text", "")
    if text:
        detail["text"] = text
    return HTTPException(status_code=502, detail=detail)


def create_app(config: AppConfig) -> FastAPI:
    """Summary: Create a FastAPI app wired to CampusLink services.

    Importance: Ensures the API layer shares the same configuration and storage.
    Alternatives: Instantiate services globally outside the factory.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=config.log_level, format="%(levelname)s %(name)s: %(message)s"
        )
    app = FastAPI(title="CampusLink API", version="0.1.0")
    context = build_context(config)
    app.state.user_services = OrderedDict()

    def services_for(user_id: int | None) -> AppServices:
        if user_id is None:
            return context.services_for_user(None)
        cache = app.state.user_services
        cached = cache.get(user_id)
        if cached is None:
            cached = context.services_for_user(user_id)
            cache[user_id] = cached
            while len(cache) > USER_SERVICES_CACHE_SIZE:
                cache.popitem(last=False)
        else:
            cache.move_to_end(user_id)
        return cached

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        """Summary: Enforce API key authentication when configured.

        Importance: Adds a minimal security layer for local and private deployments.
        Alternatives: Use OAuth or session-based authentication.
        """

        if not config.api_key:
            return
        if x_api_key != config.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    def current_user(x_user_id: int | None = Header(default=None)) -> int | None:
        if x_user_id is None:
            return None
        if context.store.get_user(x_user_id) is None:
            raise HTTPException(status_code=401, detail="Unknown user")
        return x_user_id

    def require_user(user_id: int | None = Depends(current_user)) -> int:
        if user_id is None:
            raise HTTPException(status_code=401, detail="Please sign in")
        return user_id

    @app.get("/health")
    def health() -> dict[str, str]:
        """Summary: Health check endpoint.

        Importance: Supports uptime checks in local and cloud deployments.
        Alternatives: Use a metrics endpoint only.
        """

        return {"status": "ok"}

    @app.post("/users", dependencies=[Depends(require_api_key)])
    def create_user(payload: UserCreateRequest) -> dict[str, Any]:
        try:
            user_id = services_for(None).directory.create_user(
                payload.display_name, payload.email, payload.role
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"id": user_id}

    @app.post("/jobs", dependencies=[Depends(require_api_key)])
    def create_job(payload: JobCreateRequest, user_id: int = Depends(require_user)) -> dict[str, Any]:
        return {"id": services_for(user_id).directory.post_job(user_id, payload.title, payload.company)}

    @app.post("/products", dependencies=[Depends(require_api_key)])
    def create_product(
        payload: ProductCreateRequest, user_id: int = Depends(require_user)
    ) -> dict[str, Any]:
        return {"id": services_for(user_id).directory.list_item(user_id, payload.title, payload.price)}

    @app.post("/jobs/{job_id}/applications", dependencies=[Depends(require_api_key)])
    async def apply(
        job_id: int, payload: ApplyRequest, user_id: int = Depends(require_user)
    ) -> dict[str, Any]:
        services = services_for(user_id)
        job = services.directory.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        if job.employer_id == user_id:
            raise HTTPException(status_code=400, detail="You cannot apply to your own job")
        try:
            application_id = await services.applications.apply(job_id, payload.cover_letter)
        except MessageStoreError as exc:
            raise _failure(exc) from exc
        return {"application_id": application_id}

    @app.get("/conversations", dependencies=[Depends(require_api_key)])
    async def list_conversations(
        user_id: int | None = Depends(current_user),
    ) -> list[dict[str, Any]]:
        """Summary: List the caller's conversations, newest first.

        Importance: Anonymous callers get an empty list rather than an error.
        Alternatives: Reject anonymous callers with 401.
        """

        projector = services_for(user_id).projector
        conversations = await projector.list_conversations(user_id)
        if projector.last_error is not None and not conversations:
            raise _failure(projector.last_error)
        return [asdict(conversation) for conversation in conversations]

    @app.get("/conversations/by-user", dependencies=[Depends(require_api_key)])
    async def conversations_by_user(
        counterpart_id: int | None = None,
        user_id: int | None = Depends(current_user),
    ) -> list[dict[str, Any]]:
        projector = services_for(user_id).projector
        conversations = filter_by_user(await projector.list_conversations(user_id), counterpart_id)
        return [asdict(group) for group in group_by_user(conversations)]

    @app.get("/conversations/{kind}/{scope_id}/messages", dependencies=[Depends(require_api_key)])
    async def list_messages(
        kind: str,
        scope_id: int,
        counterpart_id: int | None = None,
        user_id: int = Depends(require_user),
    ) -> list[dict[str, Any]]:
        """Summary: Return a thread and mark it read for the caller.

        Importance: Opening a thread clears its unread count.
        Alternatives: Require a separate mark-read call.
        """

        scope = _scope(kind, scope_id, counterpart_id)
        services = services_for(user_id)
        try:
            messages = await services.projector.list_messages(scope, user_id)
            await services.messages.mark_read(user_id, scope)
        except (FetchFailed, MessageStoreError) as exc:
            raise _failure(exc) from exc
        return [asdict(message) for message in messages]

    @app.post("/conversations/{kind}/{scope_id}/messages", dependencies=[Depends(require_api_key)])
    async def send_message(
        kind: str,
        scope_id: int,
        payload: SendRequest,
        user_id: int = Depends(require_user),
    ) -> dict[str, Any]:
        if not payload.text.strip():
            raise HTTPException(status_code=400, detail="Message text is empty")
        scope = _scope(kind, scope_id, payload.counterpart_id)
        try:
            message = await services_for(user_id).messages.send_message(
                user_id, scope, payload.text.strip()
            )
        except MessageStoreError as exc:
            raise _failure(exc) from exc
        return asdict(message)

    @app.post("/jobs/{job_id}/messages", dependencies=[Depends(require_api_key)])
    async def message_employer(
        job_id: int, payload: JobMessageRequest, user_id: int = Depends(require_user)
    ) -> dict[str, Any]:
        """Summary: Message a job's employer, creating an inquiry if needed.

        Importance: Concurrent requests share the per-(job, user) single-flight lock.
        Alternatives: Reject messages until the user applies.
        """

        services = services_for(user_id)
        job = services.directory.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        if job.employer_id == user_id:
            raise HTTPException(status_code=400, detail="You cannot message yourself")
        if not payload.text.strip():
            raise HTTPException(status_code=400, detail="Message text is empty")
        widget = services.job_thread(job_id, application_id=payload.application_id, live=False)
        try:
            result = await widget.send(payload.text)
        finally:
            widget.close()
        if not result.ok:
            raise _failure(result.error)
        return {"application_id": widget.application_id, "message": asdict(result.value)}

    @app.post("/products/{product_id}/messages", dependencies=[Depends(require_api_key)])
    async def message_seller(
        product_id: int, payload: ProductMessageRequest, user_id: int = Depends(require_user)
    ) -> dict[str, Any]:
        services = services_for(user_id)
        product = services.directory.get_product(product_id)
        if product is None:
            raise HTTPException(status_code=404, detail="Item not found")
        if product.seller_id == user_id:
            raise HTTPException(status_code=400, detail="You cannot message yourself")
        if not payload.text.strip():
            raise HTTPException(status_code=400, detail="Message text is empty")
        widget = services.product_thread(product_id, product.seller_id, live=False)
        try:
            result = await widget.send(payload.text)
        finally:
            widget.close()
        if not result.ok:
            raise _failure(result.error)
        return asdict(result.value)

    @app.get("/unread", dependencies=[Depends(require_api_key)])
    async def unread(user_id: int | None = Depends(current_user)) -> dict[str, Any]:
        if user_id is None:
            return {"count": 0, "label": ""}
        badge = services_for(user_id).badge()
        count = await badge.recount_for(user_id)
        return {"count": count, "label": badge.label}

    return app


def _scope(kind: str, scope_id: int, counterpart_id: int | None) -> Scope:
    if kind not in SCOPE_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown conversation type: {kind}")
    if kind == MARKETPLACE and counterpart_id is None:
        raise HTTPException(status_code=400, detail="counterpart_id is required")
    return Scope(kind=kind, scope_id=scope_id, counterpart_id=counterpart_id)


def build_app() -> FastAPI:
    """Summary: Build the app from environment configuration.

    Importance: Used as the uvicorn factory so imports stay side-effect free.
    Alternatives: Create a module-level app at import time.
    """

    return create_app(AppConfig.from_env())


def serve() -> None:
    config = AppConfig.from_env()
    uvicorn.run(
        "campuslink.api:build_app",
        factory=True,
        host=config.api_host,
        port=config.api_port,
        log_level=config.log_level.lower(),
    )
