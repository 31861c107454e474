"""
Activation states.

Each state is a frozen dataclass tagged with an ActivationPhase. Transient
states carry no data; terminal states carry what the caller needs to render
the outcome. ALLOWED_TRANSITIONS is the transition table enforced by the
state machine.
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Dict, FrozenSet, Optional, Tuple

from activator.services.activation.exceptions import ErrorKind, describe
from activator.services.activation.models import ActiveSubscription, BundleOutcome, KeyFailure


class ActivationPhase(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING_DIAGNOSTICS = "running_diagnostics"
    FETCHING_PRODUCT = "fetching_product"
    VALIDATING_KEY = "validating_key"
    CHECKING_GAME_PASS = "checking_game_pass"
    CAPTURING_TOKEN = "capturing_token"
    ACTIVATING = "activating"
    ACTIVATING_BUNDLE = "activating_bundle"
    HANDLING_CONVERSION = "handling_conversion"
    # Terminal
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    ERROR = "error"
    ALREADY_OWNED = "already_owned"
    ALREADY_REDEEMED = "already_redeemed"
    REGION_MISMATCH = "region_mismatch"
    ACTIVE_SUBSCRIPTION = "active_subscription"
    EXPIRED_SESSION = "expired_session"
    REQUIRES_DIGITAL_ACCOUNT = "requires_digital_account"
    DIAGNOSTICS_ERROR = "diagnostics_error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ActivationState:
    phase: ClassVar[ActivationPhase]
    terminal: ClassVar[bool] = False

    @property
    def is_processing(self) -> bool:
        return not self.terminal and self.phase != ActivationPhase.IDLE

    @property
    def description(self) -> str:
        return self.phase.value.replace("_", " ").capitalize()


# ====================================================================================
# TRANSIENT STATES
# ====================================================================================

@dataclass(frozen=True)
class Idle(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.IDLE


@dataclass(frozen=True)
class Initializing(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.INITIALIZING


@dataclass(frozen=True)
class RunningDiagnostics(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.RUNNING_DIAGNOSTICS


@dataclass(frozen=True)
class FetchingProduct(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.FETCHING_PRODUCT


@dataclass(frozen=True)
class ValidatingKey(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.VALIDATING_KEY


@dataclass(frozen=True)
class CheckingGamePass(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.CHECKING_GAME_PASS


@dataclass(frozen=True)
class CapturingToken(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.CAPTURING_TOKEN


@dataclass(frozen=True)
class Activating(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.ACTIVATING


@dataclass(frozen=True)
class ActivatingBundle(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.ACTIVATING_BUNDLE


@dataclass(frozen=True)
class HandlingConversion(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.HANDLING_CONVERSION


# ====================================================================================
# TERMINAL STATES
# ====================================================================================

@dataclass(frozen=True)
class Success(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.SUCCESS
    terminal: ClassVar[bool] = True
    product_name: str = ""
    keys: Tuple[str, ...] = ()

    @property
    def description(self) -> str:
        return f"{self.product_name} activated successfully"


@dataclass(frozen=True)
class PartialSuccess(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.PARTIAL_SUCCESS
    terminal: ClassVar[bool] = True
    succeeded: int = 0
    total: int = 0
    failed: Tuple[KeyFailure, ...] = ()

    @property
    def description(self) -> str:
        return f"Activated {self.succeeded} of {self.total} keys"


@dataclass(frozen=True)
class Failed(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.ERROR
    terminal: ClassVar[bool] = True
    message: str = ""
    kind: ErrorKind = ErrorKind.UNKNOWN

    @property
    def description(self) -> str:
        return self.message or describe(self.kind)


@dataclass(frozen=True)
class AlreadyOwned(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.ALREADY_OWNED
    terminal: ClassVar[bool] = True
    products: Tuple[str, ...] = ()

    @property
    def description(self) -> str:
        return describe(ErrorKind.ALREADY_OWNED)


@dataclass(frozen=True)
class AlreadyRedeemed(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.ALREADY_REDEEMED
    terminal: ClassVar[bool] = True

    @property
    def description(self) -> str:
        return describe(ErrorKind.ALREADY_REDEEMED)


@dataclass(frozen=True)
class RegionMismatch(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.REGION_MISMATCH
    terminal: ClassVar[bool] = True
    account_region: str = ""
    key_region: str = ""

    @property
    def description(self) -> str:
        return f"Your account region ({self.account_region or 'unknown'}) does not match the key region ({self.key_region})"


@dataclass(frozen=True)
class ActiveSubscriptionConflict(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.ACTIVE_SUBSCRIPTION
    terminal: ClassVar[bool] = True
    subscription: Optional[ActiveSubscription] = None

    @property
    def description(self) -> str:
        name = self.subscription.name if self.subscription else "a subscription"
        return f"Your account already has an active {name}"


@dataclass(frozen=True)
class ExpiredSession(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.EXPIRED_SESSION
    terminal: ClassVar[bool] = True

    @property
    def description(self) -> str:
        return describe(ErrorKind.SESSION_EXPIRED)


@dataclass(frozen=True)
class RequiresDigitalAccount(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.REQUIRES_DIGITAL_ACCOUNT
    terminal: ClassVar[bool] = True
    portal_url: Optional[str] = None

    @property
    def description(self) -> str:
        return "This product is delivered as a digital account"


@dataclass(frozen=True)
class DiagnosticsFailed(ActivationState):
    phase: ClassVar[ActivationPhase] = ActivationPhase.DIAGNOSTICS_ERROR
    terminal: ClassVar[bool] = True
    cause: ErrorKind = ErrorKind.UNKNOWN

    @property
    def description(self) -> str:
        return describe(self.cause)


@dataclass(frozen=True)
class Cancelled(ActivationState):
    """Run stopped from outside; a bundle keeps the outcomes reached before the stop."""
    phase: ClassVar[ActivationPhase] = ActivationPhase.CANCELLED
    terminal: ClassVar[bool] = True
    outcome: Optional[BundleOutcome] = None

    @property
    def description(self) -> str:
        return "Activation cancelled"


# ====================================================================================
# TRANSITION TABLE
# ====================================================================================

P = ActivationPhase

TERMINAL_PHASES: FrozenSet[ActivationPhase] = frozenset({
    P.SUCCESS, P.PARTIAL_SUCCESS, P.ERROR, P.ALREADY_OWNED, P.ALREADY_REDEEMED,
    P.REGION_MISMATCH, P.ACTIVE_SUBSCRIPTION, P.EXPIRED_SESSION,
    P.REQUIRES_DIGITAL_ACCOUNT, P.DIAGNOSTICS_ERROR, P.CANCELLED,
})

# Every transient phase may additionally move to ERROR or CANCELLED
_ALWAYS = frozenset({P.ERROR, P.CANCELLED})

ALLOWED_TRANSITIONS: Dict[ActivationPhase, FrozenSet[ActivationPhase]] = {
    P.IDLE: frozenset({P.INITIALIZING, P.CANCELLED}),
    P.INITIALIZING: frozenset({P.RUNNING_DIAGNOSTICS, P.FETCHING_PRODUCT}) | _ALWAYS,
    P.RUNNING_DIAGNOSTICS: frozenset({P.DIAGNOSTICS_ERROR, P.FETCHING_PRODUCT}) | _ALWAYS,
    P.FETCHING_PRODUCT: frozenset({
        P.EXPIRED_SESSION, P.VALIDATING_KEY, P.REQUIRES_DIGITAL_ACCOUNT,
    }) | _ALWAYS,
    P.VALIDATING_KEY: frozenset({
        P.ALREADY_REDEEMED, P.CHECKING_GAME_PASS, P.CAPTURING_TOKEN,
    }) | _ALWAYS,
    P.CHECKING_GAME_PASS: frozenset({
        P.ACTIVE_SUBSCRIPTION, P.REGION_MISMATCH, P.CAPTURING_TOKEN,
    }) | _ALWAYS,
    P.CAPTURING_TOKEN: frozenset({P.ACTIVATING}) | _ALWAYS,
    P.ACTIVATING: frozenset({
        P.SUCCESS, P.ACTIVATING_BUNDLE, P.HANDLING_CONVERSION,
        P.ALREADY_REDEEMED, P.ALREADY_OWNED, P.REGION_MISMATCH,
    }) | _ALWAYS,
    P.ACTIVATING_BUNDLE: frozenset({
        P.SUCCESS, P.PARTIAL_SUCCESS, P.ALREADY_REDEEMED, P.ALREADY_OWNED,
    }) | _ALWAYS,
    P.HANDLING_CONVERSION: frozenset({P.SUCCESS}) | _ALWAYS,
}

for _phase in TERMINAL_PHASES:
    ALLOWED_TRANSITIONS[_phase] = frozenset()


def can_transition(current: ActivationPhase, target: ActivationPhase) -> bool:
    return target in ALLOWED_TRANSITIONS[current]
