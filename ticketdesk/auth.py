"""Bearer token verification. Tokens are issued by the account service; we only verify them."""
from typing import Optional, Dict

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ticketdesk import settings
from ticketdesk.util.logger import get_logger

log = get_logger("auth")

security = HTTPBearer(auto_error=False)


class InvalidToken(Exception):
    pass


def decode_token(token: str) -> Dict[str, str]:
    """Returns {"user_id", "role"} or raises InvalidToken."""
    if not token:
        raise InvalidToken("missing token")
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        raise InvalidToken(str(e))

    user_id = claims.get("userId") or claims.get("sub")
    if not user_id:
        raise InvalidToken("token has no user id")
    return {"user_id": str(user_id), "role": claims.get("role") or "agent"}


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Dict[str, str]:
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return decode_token(credentials.credentials)
    except InvalidToken as e:
        log.warning("auth_rejected", {"reason": str(e)})
        raise HTTPException(status_code=401, detail="Invalid authentication token")
