from ai_request_router.errors import (
    AllProvidersFailedError,
    InvalidRequestError,
    NoEligibleProviderError,
    ProviderCallError,
    ProviderError,
    ProviderFailure,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RouterError,
)
from ai_request_router.models import (
    CostPreference,
    DispatchMode,
    Preferences,
    ProviderProfile,
    ProviderStats,
    QualityPreference,
    RouteRequest,
    RouteResult,
    SpeedPreference,
)
from ai_request_router.router import AIRequestRouter

__all__ = [
    "AIRequestRouter",
    "AllProvidersFailedError",
    "CostPreference",
    "DispatchMode",
    "InvalidRequestError",
    "NoEligibleProviderError",
    "Preferences",
    "ProviderCallError",
    "ProviderError",
    "ProviderFailure",
    "ProviderProfile",
    "ProviderStats",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "QualityPreference",
    "RouteRequest",
    "RouteResult",
    "RouterError",
    "SpeedPreference",
]
