from typing import Optional

from fastapi import Header, HTTPException, status
import structlog

logger = structlog.get_logger()


async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
) -> dict:
    """
    FastAPI dependency: caller identity forwarded by the upstream gateway.

    The gateway authenticates; this service only requires that it said who
    the caller is.
    """
    if not x_user_id or not x_user_id.strip():
        logger.warning("auth_identity_missing")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_REQUIRED",
                    "message": "Missing X-User-ID header",
                }
            },
        )
    return {"user_id": x_user_id.strip(), "email": x_user_email}
