"""Payment provider integrations."""
from .mobile_money import (
    AlwaysApprove,
    AlwaysDecline,
    MockMobileMoneyGateway,
    ProbabilityPolicy,
    build_mock_router,
)

__all__ = [
    "MockMobileMoneyGateway",
    "ProbabilityPolicy",
    "AlwaysApprove",
    "AlwaysDecline",
    "build_mock_router",
]
