"""FastAPI frontend exposing the KiddoQuest engine as a JSON API.

The app never authenticates anyone itself: an identity provider turns each
request into an :class:`~kiddoquest.security.Identity` (by default from the
``X-User-Id`` / ``X-User-Role`` headers an upstream gateway sets).  Serve it
with ``uvicorn --factory kiddoquest.webapp:create_app``.
"""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import Depends, FastAPI, Form, Request
from fastapi.responses import JSONResponse

from ..exceptions import (
    AuthorizationError,
    InsufficientBalanceError,
    KiddoQuestError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from ..security import HeaderIdentityProvider, Identity, IdentityProvider
from ..service import KiddoQuest


def error_status(exc: KiddoQuestError) -> int:
    """HTTP status code for an engine error."""

    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, AuthorizationError):
        return 403
    if isinstance(exc, StateConflictError):
        return 409
    if isinstance(exc, InsufficientBalanceError):
        return 402
    return 400


def create_app(
    engine: Optional[KiddoQuest] = None,
    *,
    identity_provider: Optional[IdentityProvider] = None,
) -> FastAPI:
    engine = engine or KiddoQuest.from_settings()
    provider = identity_provider or HeaderIdentityProvider()
    api = engine.api

    app = FastAPI(title="KiddoQuest")
    app.state.engine = engine

    @app.exception_handler(KiddoQuestError)
    async def kiddoquest_error(request: Request, exc: KiddoQuestError) -> JSONResponse:
        status = error_status(exc)
        if status >= 409:
            engine.logger.warning("request_failed", path=request.url.path, error=type(exc).__name__)
        return JSONResponse({"error": type(exc).__name__, "detail": str(exc)}, status_code=status)

    def current_identity(request: Request) -> Identity:
        return provider.authenticate(request)

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    # -- family ----------------------------------------------------------
    @app.post("/children", status_code=201)
    def add_child(
        identity: Identity = Depends(current_identity),
        name: str = Form(...),
        avatar: str = Form(""),
        child_id: Optional[str] = Form(None),
    ) -> JSONResponse:
        child = engine.add_child(identity, name, avatar=avatar, child_id=child_id)
        progress = engine.get_child_progress(identity, child.id)
        return JSONResponse(api.progress(progress), status_code=201)

    @app.get("/children/{child_id}/progress")
    def child_progress(child_id: str, identity: Identity = Depends(current_identity)) -> JSONResponse:
        return JSONResponse(api.progress(engine.get_child_progress(identity, child_id)))

    @app.get("/children/{child_id}/board")
    def child_board(
        child_id: str,
        on: Optional[date] = None,
        identity: Identity = Depends(current_identity),
    ) -> JSONResponse:
        return JSONResponse({"quests": api.board(engine.quest_board(identity, child_id, on=on))})

    @app.get("/children/{child_id}/badges")
    def child_badges(
        child_id: str,
        limit: int = 3,
        identity: Identity = Depends(current_identity),
    ) -> JSONResponse:
        upcoming = engine.badge_progress(identity, child_id, limit=limit)
        return JSONResponse(
            {
                "earned": list(engine.get_child_progress(identity, child_id).badges),
                "next": [api.badge(template, progress=percent) for template, percent in upcoming],
            }
        )

    @app.get("/children/{child_id}/redemptions")
    def child_redemptions(child_id: str, identity: Identity = Depends(current_identity)) -> JSONResponse:
        return JSONResponse(
            {"redemptions": [api.redemption(item) for item in engine.redemptions(identity, child_id)]}
        )

    @app.post("/children/{child_id}/penalties", status_code=201)
    def child_penalty(
        child_id: str,
        identity: Identity = Depends(current_identity),
        amount: str = Form(...),
        reason: str = Form(...),
    ) -> JSONResponse:
        penalty = engine.apply_penalty(identity, child_id, amount, reason)
        return JSONResponse(api.penalty(penalty), status_code=201)

    @app.post("/children/{child_id}/streak/freeze", status_code=201)
    def child_streak_freeze(
        child_id: str,
        identity: Identity = Depends(current_identity),
        on: Optional[date] = Form(None),
    ) -> JSONResponse:
        freeze = engine.freeze_streak(identity, child_id, on=on)
        return JSONResponse(api.streak_freeze(freeze), status_code=201)

    # -- quests ----------------------------------------------------------
    @app.post("/quests", status_code=201)
    def create_quest(
        identity: Identity = Depends(current_identity),
        title: str = Form(...),
        xp_reward: str = Form(...),
        quest_type: str = Form("one-time"),
        frequency: Optional[str] = Form(None),
        description: str = Form(""),
        assigned_to: List[str] = Form([]),
    ) -> JSONResponse:
        quest = engine.create_quest(
            identity,
            title,
            xp_reward,
            quest_type=quest_type,
            frequency=frequency or None,
            assigned_to=assigned_to,
            description=description,
        )
        return JSONResponse(api.quest(quest), status_code=201)

    @app.post("/quests/{quest_id}/claim")
    def claim_quest(
        quest_id: str,
        identity: Identity = Depends(current_identity),
        child_id: Optional[str] = Form(None),
    ) -> JSONResponse:
        completion = engine.claim_quest(identity, quest_id, child_id)
        return JSONResponse(api.completion(completion))

    @app.post("/completions/{completion_id}/verify")
    def verify_completion(completion_id: str, identity: Identity = Depends(current_identity)) -> JSONResponse:
        return JSONResponse(api.verification(engine.verify_completion(identity, completion_id)))

    @app.post("/completions/{completion_id}/reject")
    def reject_completion(
        completion_id: str,
        identity: Identity = Depends(current_identity),
        reason: str = Form(""),
    ) -> JSONResponse:
        return JSONResponse(api.completion(engine.reject_completion(identity, completion_id, reason)))

    @app.get("/parents/me/pending")
    def pending(identity: Identity = Depends(current_identity)) -> JSONResponse:
        return JSONResponse(
            {"pending": [api.completion(item) for item in engine.pending_verifications(identity)]}
        )

    # -- rewards ---------------------------------------------------------
    @app.post("/rewards", status_code=201)
    def create_reward(
        identity: Identity = Depends(current_identity),
        title: str = Form(...),
        cost: str = Form(...),
        description: str = Form(""),
        assigned_to: List[str] = Form([]),
    ) -> JSONResponse:
        reward = engine.create_reward(identity, title, cost, assigned_to=assigned_to, description=description)
        return JSONResponse(api.reward(reward), status_code=201)

    @app.post("/rewards/{reward_id}/redeem")
    def redeem_reward(
        reward_id: str,
        identity: Identity = Depends(current_identity),
        child_id: Optional[str] = Form(None),
    ) -> JSONResponse:
        redemption = engine.redeem_reward(identity, reward_id, child_id)
        return JSONResponse(api.redemption(redemption))

    return app


__all__ = ["create_app", "error_status"]
