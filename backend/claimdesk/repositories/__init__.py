"""Repository abstractions for database interactions."""

from .claim_repository import ClaimNotificationRepository

__all__ = ["ClaimNotificationRepository"]
