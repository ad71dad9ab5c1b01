# Authentication module

from masada.modules.auth.dependencies import (
    authenticate_token,
    get_current_user,
    get_current_user_allow_pending,
    get_optional_user,
    require_roles,
    require_email_verified,
)

__all__ = [
    "authenticate_token",
    "get_current_user",
    "get_current_user_allow_pending",
    "get_optional_user",
    "require_roles",
    "require_email_verified",
]
