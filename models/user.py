"""
Provides the User model for the application's database schema.

Users are issued by the external authentication collaborator (Clerk); this
service only mirrors them locally so chats, messages and streams can reference
an owner, and so the entitlement gate can look up the account tier.

Attributes
----------
clerk_user_id : sqlalchemy.Column
    Unique identifier for the user from the external auth system.
email : sqlalchemy.Column
    The email address of the user, which must also be unique.
username : sqlalchemy.Column
    The optional username chosen by the user.
is_active : sqlalchemy.Column
    A boolean indicating if the user is active. Defaults to `True`.
user_type : sqlalchemy.Column
    Account tier used for message quotas (`guest` or `regular`).
"""

import enum

from sqlalchemy import Boolean, Column, String

from .base import BaseModel


class UserType(str, enum.Enum):
    """Account tier enumeration."""

    GUEST = "guest"
    REGULAR = "regular"


class User(BaseModel):
    """
    Represents a user entity in the application.

    :ivar clerk_user_id: Unique identifier for the user provided by Clerk.
    :type clerk_user_id: str
    :ivar email: Email address of the user. It must be unique.
    :type email: str
    :ivar username: Username of the user. This is optional.
    :type username: str
    :ivar is_active: Indicates whether the user account is active.
    :type is_active: bool
    :ivar user_type: Account tier, one of :class:`UserType`.
    :type user_type: str
    """

    __tablename__ = "users"

    clerk_user_id = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    username = Column(String(100))
    is_active = Column(Boolean, default=True)
    user_type = Column(String(20), nullable=False, default=UserType.REGULAR.value)
