"""Authentication and membership enums."""

from enum import Enum


class Role(str, Enum):
    """Organization membership role."""

    OWNER = "owner"
    MEMBER = "member"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_
