"""
Activation Service Layer

This package provides the activation engine: entry-point resolution, the
account gate, key redemption, bundle coordination and the state machine
that sequences them for one activation run.
"""

from activator.services.activation.exceptions import (
    ActivationServiceError,
    ActivationError,
    ActivationCancelled,
    AlreadyOwnedError,
    BundleStateError,
    ErrorKind,
    HTTPStatusError,
    InvalidTransitionError,
    RegionMismatchError,
    VendorMismatchError,
)

from activator.services.activation.models import (
    ActivationRecord,
    ActiveSubscription,
    BundleOutcome,
    BundleProgress,
    DiagnosticResults,
    KeyFailure,
    KeyValidationResult,
    PendingActivation,
    Product,
    ProductInfo,
    SubscriptionStatus,
)

from activator.services.activation.context import ActivationContext, ActivationSettings
from activator.services.activation.cancellation import CancellationToken
from activator.services.activation.gate import AccountGate, Blocked, Proceed
from activator.services.activation.redeemer import AuthContext, KeyRedeemer
from activator.services.activation.bundle import BundleCoordinator
from activator.services.activation.service import ActivationStateMachine
from activator.services.activation.sources import (
    UrlMonitor,
    parse_deep_link,
    parse_external_message,
    resolve,
)

__all__ = [
    "ActivationServiceError",
    "ActivationError",
    "ActivationCancelled",
    "AlreadyOwnedError",
    "BundleStateError",
    "ErrorKind",
    "HTTPStatusError",
    "InvalidTransitionError",
    "RegionMismatchError",
    "VendorMismatchError",
    "ActivationRecord",
    "ActiveSubscription",
    "BundleOutcome",
    "BundleProgress",
    "DiagnosticResults",
    "KeyFailure",
    "KeyValidationResult",
    "PendingActivation",
    "Product",
    "ProductInfo",
    "SubscriptionStatus",
    "ActivationContext",
    "ActivationSettings",
    "CancellationToken",
    "AccountGate",
    "Blocked",
    "Proceed",
    "AuthContext",
    "KeyRedeemer",
    "BundleCoordinator",
    "ActivationStateMachine",
    "UrlMonitor",
    "parse_deep_link",
    "parse_external_message",
    "resolve",
]
