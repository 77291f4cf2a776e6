"""Caller identity from the upstream identity provider.

The gateway in front of this service authenticates the session and forwards
the verified actor id and role claim as headers.
"""
from typing import Optional
from fastapi import Header

from shared.errors import Unauthenticated
from shared.types import Actor, ActorRole


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Actor:
    """FastAPI dependency resolving the calling actor."""
    if not x_actor_id or not x_actor_role:
        raise Unauthenticated("Unauthorized - Please log in")
    try:
        role = ActorRole(x_actor_role.lower())
    except ValueError:
        raise Unauthenticated(f"Unknown role {x_actor_role}")
    return Actor(actor_id=x_actor_id, role=role)
