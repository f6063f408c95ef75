from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt, ExpiredSignatureError
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from typing import Optional
from relay.models.user import User
from relay.database import get_db
from relay.exceptions import AuthenticationError, AuthorizationError, BannedUserError, InvalidTokenError
from .constants import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES
import logging

logger = logging.getLogger(__name__)

# OAuth2 scheme for token validation (tokens are issued by the account service)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


# Function to create an access token with an expiration time
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    if "sub" not in to_encode:
        raise ValueError("Missing 'sub' claim (user id) in token data.")

    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "sub": str(to_encode["sub"])})

    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


# Function to decode an access token into the user id it names
def decode_access_token(token: str) -> int:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        logger.warning("Token expired")
        raise InvalidTokenError("Token has expired")
    except JWTError as e:
        logger.warning(f"JWT decoding failed: {str(e)}")
        raise InvalidTokenError()

    subject = payload.get("sub")
    if subject is None:
        logger.warning("Token is missing 'sub' claim")
        raise InvalidTokenError("Token does not contain 'sub' field.")

    try:
        return int(subject)
    except (TypeError, ValueError):
        raise InvalidTokenError("Token subject is not a user id.")


async def get_user_from_token(token: str | None, db: AsyncSession) -> User | None:
    """Resolve a hub handshake token to its user, or None when it cannot be trusted."""
    if not token:
        return None
    try:
        user_id = decode_access_token(token)
    except InvalidTokenError:
        return None

    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    user_id = decode_access_token(token)

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalars().first()
    if user is None:
        logger.warning(f"User {user_id} from token not found.")
        raise AuthenticationError("Could not validate credentials")

    if user.banned:
        logger.info(f"Rejected request from banned user {user.id}")
        raise BannedUserError()

    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise AuthorizationError()
    return user
