"""
ParkFlow - Security Package
Firebase authentication and role checks.
"""

from parkflow.security.firebase_auth import (
    init_firebase,
    verify_firebase_token,
    get_current_user,
    get_current_admin,
)

__all__ = [
    "init_firebase",
    "verify_firebase_token",
    "get_current_user",
    "get_current_admin",
]
