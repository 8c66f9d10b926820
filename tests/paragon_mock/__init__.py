"""Paragon API mock for integration testing.

Provides an in-memory implementation of the RemoteGateway surface so the
reconcilers can be exercised end to end without network access.

Key Features:
- Scripted deployment status sequences (DEPLOYING -> DEPLOYED, FAILED, ...)
- Undeployment that reaps deployment records (404 on later reads)
- A REAPED scripted status for records that vanish mid-undeploy
- Credential upsert per integration with decrypted read-back
- Error injection per gateway method
- Call recording for assertions

Usage:
    from paragon_mock import FakeGateway

    gateway = FakeGateway()
    gateway.add_integration("int-1", "salesforce")

    reconciler = Reconciler(config, gateway=gateway, store=store, sleep=lambda _: None)
    result = reconciler.apply(declaration)

    assert result.success
    assert gateway.count("create_credential") == 1
"""

from .gateway import (
    DEFAULT_USER_EMAIL,
    REAPED,
    FakeGateway,
    MockDeployment,
    MockGatewayState,
    seed_credential,
)
from .tokens import make_access_token

__all__ = [
    "DEFAULT_USER_EMAIL",
    "FakeGateway",
    "MockDeployment",
    "MockGatewayState",
    "REAPED",
    "make_access_token",
    "seed_credential",
]
