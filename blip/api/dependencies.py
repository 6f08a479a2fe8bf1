"""
Request dependencies - services stored on app.state during startup
"""

from fastapi import Depends, HTTPException, Request, status

from blip.middleware.authentication import AuthenticatedUser, require_auth
from blip.services.history_service import HistoryService
from blip.services.identity_service import IdentityProviderClient
from blip.services.metrics_service import MetricsService
from blip.services.saved_contracts_service import SavedContractsService
from blip.utils.errors import ErrorCode, create_error_response


def _service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=create_error_response(
                ErrorCode.INTERNAL_ERROR, "Service is starting up or unavailable."
            ),
        )
    return service


def get_metrics_service(request: Request) -> MetricsService:
    return _service(request, "metrics_service")


def get_history_service(request: Request) -> HistoryService:
    return _service(request, "history_service")


def get_saved_contracts_service(request: Request) -> SavedContractsService:
    return _service(request, "saved_contracts_service")


def get_identity_client(request: Request) -> IdentityProviderClient:
    return _service(request, "identity_client")


def get_current_user_id(user: AuthenticatedUser = Depends(require_auth)) -> str:
    return user.user_id
