"""Identifier coercion shared by the services."""
from typing import Union
from uuid import UUID

from resume_ats.errors import NotFoundError


def coerce_uuid(value: Union[UUID, str], label: str) -> UUID:
    """
    Return ``value`` as a UUID.

    A malformed identifier can never resolve to a record, so it is reported
    as NotFoundError rather than a validation failure.
    """
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError, AttributeError) as e:
        raise NotFoundError(
            f"{label} {value!r} not found",
            details={label: str(value), "malformed": True},
        ) from e
