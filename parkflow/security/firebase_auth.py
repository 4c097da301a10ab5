"""
ParkFlow - Firebase Authentication Module
Handles Firebase ID token verification and user extraction.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import firebase_admin
from firebase_admin import auth, credentials
from typing import Optional
import logging

from parkflow.config import Settings
from parkflow.database import queries
from parkflow.models.user import UserProfile, UserRole, TokenPayload
from parkflow.services.container import ServiceContainer, get_services

# Configure logging
logger = logging.getLogger(__name__)

# Security scheme for Bearer token
bearer_scheme = HTTPBearer(auto_error=False)


def init_firebase(settings: Settings) -> bool:
    """
    Initialize the Firebase Admin SDK used to verify ID tokens.
    Safe to call more than once.

    Returns:
        bool: True if the SDK is initialized
    """
    if firebase_admin._apps:
        return True

    if not settings.firebase_configured:
        logger.warning("Firebase credentials not configured; token verification unavailable")
        return False

    cred = credentials.Certificate(settings.get_firebase_credentials())
    firebase_admin.initialize_app(cred)
    logger.info(f"Firebase initialized for project {settings.firebase_project_id}")
    return True


async def verify_firebase_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> TokenPayload:
    """
    Verify Firebase ID token from Authorization header.

    Args:
        credentials: Bearer token from Authorization header

    Returns:
        TokenPayload: Decoded token information

    Raises:
        HTTPException: If token is invalid or missing
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        decoded_token = auth.verify_id_token(credentials.credentials)

    except auth.ExpiredIdTokenError:
        logger.warning("Expired Firebase token received")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired. Please sign in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    except auth.RevokedIdTokenError:
        logger.warning("Revoked Firebase token received")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked. Please sign in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    except auth.InvalidIdTokenError as e:
        logger.warning(f"Invalid Firebase token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    except ValueError as e:
        # Raised when the SDK is not initialized
        logger.error(f"Token verification unavailable: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable",
        )

    return TokenPayload(
        uid=decoded_token.get("uid"),
        email=decoded_token.get("email"),
        email_verified=decoded_token.get("email_verified", False),
        name=decoded_token.get("name"),
        role=decoded_token.get("role"),
        admin=bool(decoded_token.get("admin", False)),
        exp=decoded_token.get("exp"),
    )


async def get_current_user(
    token: TokenPayload = Depends(verify_firebase_token),
    services: ServiceContainer = Depends(get_services),
) -> UserProfile:
    """
    Get the current authenticated user profile.
    Creates or refreshes the user row on every call.

    The admin role comes from custom claims (role == "admin" or admin: true);
    without such claims the stored role is kept.

    Args:
        token: Verified Firebase token payload

    Returns:
        UserProfile: Current user's profile
    """
    claimed_admin = token.role == UserRole.ADMIN.value or token.admin

    with services.database.session_scope() as db:
        user = queries.upsert_user(
            db,
            token.uid,
            email=token.email,
            display_name=token.name,
            role=UserRole.ADMIN if claimed_admin else None,
        )
        role = UserRole(user.role)

    return UserProfile(
        uid=token.uid,
        email=token.email,
        display_name=token.name,
        email_verified=token.email_verified,
        role=role,
    )


async def get_current_admin(
    user: UserProfile = Depends(get_current_user)
) -> UserProfile:
    """
    Verify that the current user has admin privileges.

    Args:
        user: Current authenticated user

    Returns:
        UserProfile: Admin user's profile

    Raises:
        HTTPException: If user is not an admin
    """
    if user.role != UserRole.ADMIN:
        logger.warning(f"Non-admin user {user.uid} attempted admin action")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )

    return user
