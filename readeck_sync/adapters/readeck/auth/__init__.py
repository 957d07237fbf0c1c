"""Device-code login for Readeck."""

from readeck_sync.adapters.readeck.auth.device_flow import (
    DeviceAuthClient,
    DeviceFlowResult,
    DeviceFlowState,
)
from readeck_sync.adapters.readeck.auth.service import AuthService

__all__ = ["AuthService", "DeviceAuthClient", "DeviceFlowResult", "DeviceFlowState"]
