from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import ExpiredSignatureError, JWTError, jwt
import bcrypt
import uuid

from masada.core.config import settings
from masada.core.exceptions import AuthenticationError, ValidationError

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
EMAIL_VERIFICATION_TOKEN_TYPE = "email_verification"
PASSWORD_RESET_TOKEN_TYPE = "password_reset"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password"""
    # Bcrypt has a 72 byte limit
    password_bytes = plain_password.encode('utf-8')[:72]
    return bcrypt.checkpw(password_bytes, hashed_password.encode('utf-8'))


def get_password_hash(password: str) -> str:
    """Hash password with configurable rounds (BCRYPT_ROUNDS in .env)"""
    password_bytes = password.encode('utf-8')[:72]
    hashed = bcrypt.hashpw(password_bytes, bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS))
    return hashed.decode('utf-8')


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "type": ACCESS_TOKEN_TYPE})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def create_refresh_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT refresh token, signed with the refresh secret"""
    expire = datetime.utcnow() + (expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS))
    to_encode = {
        "sub": str(user_id),
        "type": REFRESH_TOKEN_TYPE,
        # jti keeps tokens issued within the same second distinct
        "jti": uuid.uuid4().hex,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.refresh_secret, algorithm=settings.JWT_ALGORITHM)


def create_purpose_token(user_id: str, purpose: str, expires_delta: timedelta) -> str:
    """Create a single-purpose token (email verification, password reset)"""
    to_encode = {
        "sub": str(user_id),
        "type": purpose,
        "exp": datetime.utcnow() + expires_delta,
    }
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str, secret: Optional[str] = None) -> Dict[str, Any]:
    """Decode JWT token. Raises jose errors on failure."""
    return jwt.decode(
        token,
        secret or settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM]
    )


def verify_access_token(token: str) -> Dict[str, Any]:
    """Decode an access token, mapping failures to 401s"""
    try:
        payload = decode_token(token)
    except ExpiredSignatureError:
        raise AuthenticationError("Access token expired")
    except JWTError:
        raise AuthenticationError("Invalid access token")

    if payload.get("type") != ACCESS_TOKEN_TYPE or not payload.get("sub"):
        raise AuthenticationError("Invalid access token")

    return payload


def verify_refresh_token(token: str) -> Dict[str, Any]:
    """Decode a refresh token signed with the refresh secret"""
    try:
        payload = decode_token(token, settings.refresh_secret)
    except JWTError:
        raise AuthenticationError("Invalid or expired refresh token")

    if payload.get("type") != REFRESH_TOKEN_TYPE or not payload.get("sub"):
        raise AuthenticationError("Invalid or expired refresh token")

    return payload


def verify_purpose_token(token: str, purpose: str, error_message: str) -> str:
    """Decode a single-purpose token and return its user id"""
    try:
        payload = decode_token(token)
    except JWTError:
        raise ValidationError(error_message)

    if payload.get("type") != purpose or not payload.get("sub"):
        raise ValidationError(error_message)

    return payload["sub"]
