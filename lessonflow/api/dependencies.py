from __future__ import annotations

from typing import Optional

from fastapi import Header, Request

from ..engine import WorkflowEngine


def get_engine(request: Request) -> WorkflowEngine:
    return request.app.state.engine


def get_caller_id(
    request: Request, authorization: Optional[str] = Header(default=None)
) -> Optional[str]:
    """Subject of the bearer token, or ``None`` while auth is disabled."""
    verifier = request.app.state.verifier
    if verifier is None:
        return None
    return verifier.caller_id(authorization)
