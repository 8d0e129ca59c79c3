from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

import jwt

from ..config import AuthConfig
from ..contracts import WorkflowInstance
from ..errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)


class TokenVerifier:
    """Validates bearer tokens issued by the hosted data store."""

    def __init__(
        self,
        secret: str,
        audience: Optional[str] = "authenticated",
        algorithms: Optional[List[str]] = None,
        leeway: int = 0,
    ) -> None:
        self.secret = secret
        self.audience = audience
        self.algorithms = algorithms or ["HS256"]
        self.leeway = leeway

    @classmethod
    def from_config(cls, config: AuthConfig) -> Optional["TokenVerifier"]:
        if not config.enabled:
            return None
        return cls(
            secret=config.jwt_secret,
            audience=config.audience,
            algorithms=config.algorithms,
            leeway=config.leeway,
        )

    def verify(self, token: str) -> Mapping[str, Any]:
        """Decode ``token`` and return its claims.

        Raises:
            Unauthorized: The token is malformed, expired, signed with another
                key or carries no subject.
        """
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=self.algorithms,
                audience=self.audience,
                leeway=self.leeway,
                options={"verify_aud": self.audience is not None},
            )
        except jwt.PyJWTError as e:
            logger.info(f"Rejected bearer token: {e}")
            raise Unauthorized(f"Invalid token: {e}") from e
        if not claims.get("sub"):
            raise Unauthorized("Token has no subject")
        return claims

    def caller_id(self, authorization: Optional[str]) -> str:
        """Return the subject of an ``Authorization: Bearer`` header value."""
        if not authorization:
            raise Unauthorized("Missing bearer token")
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise Unauthorized("Expected a bearer token")
        return str(self.verify(token.strip())["sub"])


def ensure_owner(instance: WorkflowInstance, caller_id: Optional[str]) -> None:
    """Reject callers that do not own ``instance``.

    Instances created without an owner are open to every authenticated
    caller.
    """
    if caller_id is None or instance.owner_id is None:
        return
    if instance.owner_id != caller_id:
        raise Forbidden(f"Workflow {instance.id} belongs to another user")
