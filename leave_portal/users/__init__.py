"""Users module — User model, profile and onboarding services."""

from leave_portal.users.models import User

__all__ = ["User"]
