"""FastAPI dependencies for permission checks."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Annotated, Any

from fastapi import Depends, Header, HTTPException, Request, status

from authgraph.logging import log_context
from authgraph.manager import AuthManager
from authgraph.types import normalize_user_id

logger = logging.getLogger(__name__)

ParamsResolver = Callable[[Request], Mapping[str, Any]]


def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str | None:
    """Read the caller's id from ``X-User-Id``.

    Applications with real authentication override this dependency through
    ``app.dependency_overrides``.
    """

    return normalize_user_id(x_user_id)


def _path_params(request: Request) -> Mapping[str, Any]:
    return dict(request.path_params)


def require_permission(
    manager: AuthManager,
    permission: str,
    *,
    params: ParamsResolver | None = None,
) -> Callable[..., str]:
    """Build a dependency that rejects callers lacking ``permission``.

    Rule params default to the request's path parameters.
    """

    resolve_params = params or _path_params

    def _require_permission(
        request: Request,
        user_id: Annotated[str | None, Depends(get_current_user_id)],
    ) -> str:
        if user_id is None:
            raise HTTPException(
                status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
            )

        if manager.check_access(user_id, permission, resolve_params(request)):
            return user_id

        logger.info(
            "authgraph.request.forbidden",
            extra=log_context(user_id=user_id, item=permission, path=request.url.path),
        )
        raise HTTPException(
            status.HTTP_403_FORBIDDEN,
            detail=f"Permission '{permission}' required",
        )

    return _require_permission


__all__ = ["get_current_user_id", "require_permission"]
