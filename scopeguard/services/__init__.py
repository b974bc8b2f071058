"""Services for scopeguard."""

from scopeguard.services.authorization import AuthorizationService, create_authorization_service

__all__ = ["AuthorizationService", "create_authorization_service"]
