from fastapi import Request

from .services.engine import RelationshipEngine


def get_engine(request: Request) -> RelationshipEngine:
    """The process-wide engine; one per app so its write lock is shared by every request."""
    return request.app.state.relationship_engine


__all__ = ["get_engine"]
