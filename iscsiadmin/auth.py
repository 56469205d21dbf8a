"""
Authentication info validation.
"""

from typing import Optional

from .config import AuthInfo, AuthMethod, check_length, check_record_value
from .constants import ISCSIConstants
from .exceptions import InvalidArgumentError


def resolve_auth_method(auth_info: Optional[AuthInfo]) -> AuthMethod:
    """Return the auth method tag, treating a missing descriptor as NONE.

    Raises:
        InvalidArgumentError: If the tag is not a known AuthMethod
    """
    if auth_info is None:
        return AuthMethod.NONE
    try:
        return AuthMethod(auth_info.method)
    except ValueError:
        method = auth_info.method
        tag = method.value if isinstance(method, AuthMethod) else method
        raise InvalidArgumentError(f"Invalid authentication method: {tag}")


def verify_auth_info(auth_info: Optional[AuthInfo]) -> None:
    """Validate an authentication descriptor before it is applied.

    No auth (or no descriptor) always validates. CHAP requires a username
    and a password, and a reverse password whenever a reverse username is
    given.

    Raises:
        InvalidArgumentError: Describing the first problem found
    """
    if resolve_auth_method(auth_info) is AuthMethod.NONE:
        return

    chap = auth_info.chap
    if not chap.username:
        raise InvalidArgumentError("Empty username")
    if not chap.password:
        raise InvalidArgumentError("Empty password")
    if chap.reverse_username and not chap.reverse_password:
        raise InvalidArgumentError("Empty reverse password")

    for label, value in (("Username", chap.username), ("Password", chap.password),
                         ("Reverse username", chap.reverse_username),
                         ("Reverse password", chap.reverse_password)):
        check_length(label, value, ISCSIConstants.AUTH_STR_MAXLEN)
        check_record_value(label, value)
