"""Request dependencies: API key check and access to application state."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from sortify.config import Settings
    from sortify.ml.classifier import WasteClassifier
    from sortify.ml.inference import InferencePool
    from sortify.ml.model_manager import SessionRegistry
    from sortify.scanner import ScanSession

_bearer_scheme = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def get_registry(request: Request) -> SessionRegistry:
    registry: SessionRegistry = request.app.state.registry
    return registry


def get_classifier(request: Request) -> WasteClassifier:
    classifier: WasteClassifier = request.app.state.classifier
    return classifier


def get_scan_session(request: Request) -> ScanSession:
    scan_session: ScanSession = request.app.state.scan_session
    return scan_session


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Check the Bearer token against the configured API key.

    If no API key is configured (SORTIFY_API_KEY not set), all requests pass.
    Otherwise requests must include 'Authorization: Bearer <key>'.
    """
    settings = get_settings(request)
    if settings.api_key is None:
        return

    if credentials is None or not secrets.compare_digest(credentials.credentials.encode(), settings.api_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
