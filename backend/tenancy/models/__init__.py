# Database models
from tenancy.models.tenant import Tenant, TenantStatus
from tenancy.models.legacy import (
    LegacyAiSession,
    LegacyBiometricData,
    LegacyChatMessage,
    LegacyChurnPrediction,
    LegacyMember,
    LegacyRefreshToken,
    LegacyUser,
    LegacyWorkout,
)

__all__ = [
    "Tenant",
    "TenantStatus",
    "LegacyUser",
    "LegacyMember",
    "LegacyWorkout",
    "LegacyAiSession",
    "LegacyBiometricData",
    "LegacyChurnPrediction",
    "LegacyChatMessage",
    "LegacyRefreshToken",
]
