"""
Activation state machine.

One ActivationStateMachine instance drives exactly one activation run:

    idle → initializing → running_diagnostics → fetching_product
         → validating_key → checking_game_pass → capturing_token
         → activating → (activating_bundle | handling_conversion) → terminal

The run is strictly sequential: one collaborator call is in flight at a time,
and cancellation is honoured at the next suspension point. On reaching a
terminal state other than `cancelled`, one ActivationRecord is saved and the
session backend is told the outcome; both are best-effort.

A finished instance rejects further transitions; retrying means building a
new instance.
"""

import asyncio
import logging
import time
from dataclasses import replace
from typing import Callable, List, Optional

from activator.core.credential_cache import BEARER_SCOPE
from activator.core.structured_logger import log_event
from activator.services.activation.bundle import BundleCoordinator
from activator.services.activation.cancellation import CancellationToken
from activator.services.activation.context import ActivationContext
from activator.services.activation.exceptions import (
    ActivationCancelled,
    ActivationError,
    AlreadyOwnedError,
    ErrorKind,
    InvalidTransitionError,
    RegionMismatchError,
    VendorMismatchError,
    describe,
)
from activator.services.activation.gate import AccountGate, Blocked
from activator.services.activation.models import (
    ActivationRecord,
    BundleOutcome,
    BundleProgress,
    PendingActivation,
    is_redeemed_status,
)
from activator.services.activation.redeemer import AuthContext, KeyRedeemer
from activator.services.activation.sources import LOADING_PRODUCT_NAME
from activator.services.activation.states import (
    ActivatingBundle,
    Activating,
    ActivationPhase,
    ActivationState,
    ActiveSubscriptionConflict,
    AlreadyOwned,
    AlreadyRedeemed,
    Cancelled,
    CapturingToken,
    CheckingGamePass,
    DiagnosticsFailed,
    ExpiredSession,
    Failed,
    FetchingProduct,
    HandlingConversion,
    Idle,
    Initializing,
    PartialSuccess,
    RegionMismatch,
    RequiresDigitalAccount,
    RunningDiagnostics,
    Success,
    ValidatingKey,
    can_transition,
)
from activator.utils.logging_helpers import classify_error, generate_correlation_id, set_correlation_id
from activator.utils.retry import TRANSIENT_EXCEPTIONS

logger = logging.getLogger(__name__)

StateListener = Callable[[ActivationState], None]
ProgressListener = Callable[[BundleProgress], None]

# Progress fraction reached on entering each step
PROGRESS_PRODUCT = 0.05
PROGRESS_GATE = 0.2
PROGRESS_TOKEN = 0.3
PROGRESS_ACTIVATING = 0.6
PROGRESS_BUNDLE_SPAN = 0.3
BUNDLE_FAILED_MESSAGE = "All keys failed to activate"


class ActivationStateMachine:
    """
    Controller for one activation run.

    Args:
        context: Shared collaborators, cache and retry executor
        activation: What to activate (from sources.resolve())
        account_token: Account session credential for the gate; None uses the ambient session
        run_diagnostics: Run the diagnostics probe before fetching the product
        correlation_id: Run id for logs (generated when omitted)
    """

    def __init__(
        self,
        context: ActivationContext,
        activation: PendingActivation,
        *,
        account_token: Optional[str] = None,
        run_diagnostics: bool = True,
        correlation_id: Optional[str] = None,
    ):
        self.context = context
        self.activation = activation
        self.account_token = account_token
        self.run_diagnostics = run_diagnostics
        self.run_id = correlation_id or generate_correlation_id()
        self.cancellation = CancellationToken()

        self._state: ActivationState = Idle()
        self._history: List[ActivationState] = [self._state]
        self._progress = 0.0
        self._bundle_progress: Optional[BundleProgress] = None
        self._account_region: Optional[str] = None
        self._session_status: Optional[str] = None
        self._started = False
        self._state_listeners: List[StateListener] = []
        self._progress_listeners: List[ProgressListener] = []

    # ====================================================================================
    # OBSERVATION
    # ====================================================================================

    @property
    def state(self) -> ActivationState:
        return self._state

    @property
    def history(self) -> List[ActivationState]:
        return list(self._history)

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def bundle_progress(self) -> Optional[BundleProgress]:
        return self._bundle_progress

    @property
    def is_finished(self) -> bool:
        return self._state.terminal

    def subscribe(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def subscribe_progress(self, listener: ProgressListener) -> None:
        self._progress_listeners.append(listener)

    def cancel(self, reason: Optional[str] = None) -> None:
        """Request cancellation; takes effect at the next suspension point."""
        if not self._state.terminal:
            logger.info("Activation cancel requested: run_id=%s reason=%s", self.run_id, reason)
            self.cancellation.cancel(reason)

    # ====================================================================================
    # TRANSITIONS
    # ====================================================================================

    def _transition(self, new_state: ActivationState) -> None:
        current = self._state
        if current.terminal:
            raise InvalidTransitionError(
                f"run {self.run_id} already finished in {current.phase.value}"
            )
        if not can_transition(current.phase, new_state.phase):
            raise InvalidTransitionError(
                f"{current.phase.value} -> {new_state.phase.value} is not allowed"
            )

        self._state = new_state
        self._history.append(new_state)
        log_event(
            logger,
            component="activation",
            operation=new_state.phase.value,
            correlation_id=self.run_id,
            outcome="finished" if new_state.terminal else "entered",
        )
        for listener in list(self._state_listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("Activation state listener failed")

    def _enter(self, new_state: ActivationState) -> None:
        """Enter a transient state; this is a cancellation checkpoint."""
        self.cancellation.raise_if_cancelled()
        self._transition(new_state)

    def _on_bundle_progress(self, progress: BundleProgress) -> None:
        self._bundle_progress = progress
        self._progress = PROGRESS_ACTIVATING + PROGRESS_BUNDLE_SPAN * progress.fraction
        for listener in list(self._progress_listeners):
            try:
                listener(progress)
            except Exception:
                logger.exception("Bundle progress listener failed")

    def _ensure_reachable(self) -> None:
        if not self.context.is_reachable():
            raise ActivationError(ErrorKind.NETWORK_ERROR, "network unreachable")

    # ====================================================================================
    # RUN
    # ====================================================================================

    async def run(self) -> ActivationState:
        """
        Drive the run to a terminal state and return it.

        Raises:
            InvalidTransitionError: the instance was already run
            asyncio.CancelledError: the surrounding task was cancelled (the run
                is moved to `cancelled` first)
            Unexpected exceptions, after the run is moved to `error`
        """
        if self._started:
            raise InvalidTransitionError("an activation run cannot be restarted; create a new instance")
        self._started = True
        set_correlation_id(self.run_id)
        started_at = time.monotonic()

        try:
            final = await self._execute()
        except ActivationCancelled as e:
            final = Cancelled(outcome=e.outcome)
        except ActivationError as e:
            final = self._terminal_for_error(e)
        except TRANSIENT_EXCEPTIONS as e:
            final = Failed(describe(ErrorKind.NETWORK_ERROR), ErrorKind.NETWORK_ERROR)
            logger.warning("Activation transport failure: %s", type(e).__name__)
        except asyncio.CancelledError:
            self._transition(Cancelled())
            raise
        except Exception as e:
            logger.exception("Activation run failed unexpectedly: run_id=%s", self.run_id)
            await self._finish(Failed(describe(ErrorKind.UNKNOWN), ErrorKind.UNKNOWN), started_at, classify_error(e))
            raise

        await self._finish(final, started_at)
        return final

    async def _finish(self, final: ActivationState, started_at: float, error_type: Optional[str] = None) -> None:
        self._transition(final)
        self._progress = 1.0
        duration_ms = int((time.monotonic() - started_at) * 1000)

        if isinstance(final, Cancelled):
            log_event(
                logger,
                component="activation",
                operation="run",
                correlation_id=self.run_id,
                outcome="cancelled",
                duration_ms=duration_ms,
            )
            return

        success = isinstance(final, (Success, PartialSuccess))
        log_event(
            logger,
            component="activation",
            operation="run",
            correlation_id=self.run_id,
            outcome="success" if isinstance(final, Success) else ("degraded" if success else "failed"),
            duration_ms=duration_ms,
            reason=error_type or (None if success else final.phase.value),
            level="info" if success else "warning",
        )
        await self._emit(final, success)

    async def _emit(self, final: ActivationState, success: bool) -> None:
        activation = self.activation
        record = ActivationRecord(
            product_name=activation.product_name,
            success=success,
            session_token=activation.session_token,
            error_message=None if success else final.description,
        )
        if self.context.persistence is not None:
            try:
                await self.context.persistence.save(record)
            except Exception as e:
                logger.warning("Failed to save activation record: run_id=%s error=%s", self.run_id, e)

        if self.context.reporter is not None and activation.session_token and not activation.is_test_mode:
            try:
                await self.context.reporter.mark_activated(activation.session_token, success)
            except Exception as e:
                logger.warning("Failed to report activation result: run_id=%s error=%s", self.run_id, e)

    def _terminal_for_error(self, error: ActivationError) -> ActivationState:
        """Map a named failure to its terminal state, falling back to `error`."""
        candidate: ActivationState
        if error.kind == ErrorKind.SESSION_EXPIRED:
            candidate = ExpiredSession()
        elif error.kind == ErrorKind.ALREADY_REDEEMED:
            candidate = AlreadyRedeemed()
        elif isinstance(error, AlreadyOwnedError):
            candidate = AlreadyOwned(products=error.products)
        elif isinstance(error, RegionMismatchError):
            candidate = RegionMismatch(error.account_region, error.key_region)
        elif error.kind == ErrorKind.REGION_RESTRICTED:
            candidate = RegionMismatch(self._account_region or "", self.activation.region)
        else:
            candidate = Failed(error.message, error.kind)

        if not can_transition(self._state.phase, candidate.phase):
            candidate = Failed(error.message, error.kind)
        log_event(
            logger,
            component="activation",
            operation=self._state.phase.value,
            correlation_id=self.run_id,
            outcome="failed",
            reason=error.kind.value,
            level="warning",
        )
        return candidate

    # ====================================================================================
    # STEPS
    # ====================================================================================

    async def _execute(self) -> ActivationState:
        ctx = self.context
        self._enter(Initializing())

        if self.run_diagnostics and ctx.diagnostics is not None:
            blocked = await self._diagnose()
            if blocked is not None:
                return blocked

        self._enter(FetchingProduct())
        expired = await self._fetch_product()
        if expired is not None:
            return expired
        self._progress = PROGRESS_PRODUCT
        activation = self.activation

        if activation.requires_digital_account:
            return RequiresDigitalAccount(portal_url=await self._portal_url())

        self._enter(ValidatingKey())
        vendor = activation.vendor or ""
        if vendor and vendor not in ctx.settings.accepted_vendors:
            raise VendorMismatchError(vendor)
        if is_redeemed_status(self._session_status):
            return AlreadyRedeemed()

        if ctx.account is not None and (activation.is_subscription or not activation.is_region_agnostic):
            self._enter(CheckingGamePass())
            self._progress = PROGRESS_GATE
            blocked = await self._check_account()
            if blocked is not None:
                return blocked

        self._enter(CapturingToken())
        self._progress = PROGRESS_TOKEN
        token = await self._capture_token()

        self._enter(Activating())
        self._progress = PROGRESS_ACTIVATING
        auth = AuthContext(
            token=token,
            region=activation.region,
            account_region=self._account_region,
            session_token=activation.session_token,
        )
        redeemer = KeyRedeemer(
            ctx.storefront,
            ctx.retry,
            ctx.cache,
            proxy_source=ctx.proxy_source,
            catalog=ctx.catalog,
            conversion=ctx.conversion,
            proxy_ttl=ctx.settings.proxy_credentials_ttl,
            conversion_timeout=ctx.settings.conversion_timeout,
        )

        if activation.is_bundle:
            self._enter(ActivatingBundle())
            coordinator = BundleCoordinator(
                redeemer,
                key_delay=ctx.settings.bundle_key_delay,
                correlation_id=self.run_id,
                sleep=ctx.sleep,
            )
            outcome = await coordinator.run(
                activation.keys,
                auth,
                on_progress=self._on_bundle_progress,
                cancellation=self.cancellation,
            )
            return self._classify_bundle(outcome)

        key = activation.keys[0]
        title = None
        try:
            result = await redeemer.redeem(key, auth, self.cancellation)
            title = result.product_info.title if result.product_info else None
        except ActivationError as e:
            if e.kind != ErrorKind.CONVERSION_REQUIRED:
                raise
            self._enter(HandlingConversion())
            await redeemer.convert(key, auth, self.cancellation)
        return Success(product_name=self._display_name(title), keys=activation.keys)

    async def _diagnose(self) -> Optional[ActivationState]:
        self._enter(RunningDiagnostics())
        if not self.context.is_reachable():
            return DiagnosticsFailed(cause=ErrorKind.NO_NETWORK)
        try:
            results = await self.cancellation.guard(
                self.context.diagnostics.run(),
                timeout=self.context.settings.diagnostics_timeout,
            )
        except asyncio.TimeoutError:
            return DiagnosticsFailed(cause=ErrorKind.DIAGNOSTICS_TIMEOUT)

        issues = results.blocking_issues()
        if issues:
            logger.info("Diagnostics reported blocking issues: %s", ", ".join(issues))
            return DiagnosticsFailed(cause=ErrorKind(issues[0]))
        if results.account_region:
            self._account_region = results.account_region
        return None

    async def _fetch_product(self) -> Optional[ActivationState]:
        ctx = self.context
        activation = self.activation
        token = activation.session_token

        if token and ctx.sessions is not None and not (activation.is_test_mode and activation.keys):
            self._ensure_reachable()
            try:
                product = await ctx.retry.run(lambda: ctx.sessions.fetch(token), cancellation=self.cancellation)
            except ActivationError as e:
                if e.kind == ErrorKind.SESSION_EXPIRED:
                    return ExpiredSession()
                raise
            if product.is_expired():
                return ExpiredSession()
            self._session_status = product.status
            self.activation = activation.with_product(product)
            if product.product_id in ctx.settings.game_pass_product_ids and not self.activation.is_subscription:
                self.activation = replace(self.activation, is_subscription=True)

        if not self.activation.keys:
            raise ActivationError(ErrorKind.PRODUCT_NOT_FOUND, "no license key attached")
        return None

    async def _portal_url(self) -> Optional[str]:
        activation = self.activation
        if activation.portal_url or self.context.portal_links is None or not activation.session_token:
            return activation.portal_url
        try:
            return await self.context.portal_links.portal_url(activation.session_token)
        except Exception as e:
            logger.warning("Portal URL lookup failed: run_id=%s error=%s", self.run_id, e)
            return None

    async def _check_account(self) -> Optional[ActivationState]:
        ctx = self.context
        gate = AccountGate(ctx.account, ctx.subscriptions, ctx.retry)
        self._ensure_reachable()
        decision = await gate.check(
            self.account_token,
            self.activation.region,
            self.activation.is_subscription,
            cancellation=self.cancellation,
        )
        if isinstance(decision, Blocked):
            if decision.reason == ErrorKind.REGION_MISMATCH:
                return RegionMismatch(decision.account_region or "", decision.key_region or "")
            if decision.reason == ErrorKind.ACTIVE_SUBSCRIPTION:
                return ActiveSubscriptionConflict(subscription=decision.subscription)
            return Failed(decision.detail or describe(decision.reason), decision.reason)

        self._account_region = decision.account_region
        return None

    async def _capture_token(self) -> str:
        ctx = self.context
        cached = ctx.cache.get(BEARER_SCOPE)
        if cached:
            logger.info("Using cached bearer token: run_id=%s", self.run_id)
            return cached
        if ctx.token_capture is None:
            raise ActivationError(ErrorKind.NO_TOKEN)

        try:
            token = await self.cancellation.guard(
                ctx.token_capture.capture(),
                timeout=ctx.settings.token_timeout,
            )
        except asyncio.TimeoutError:
            raise ActivationError(ErrorKind.TOKEN_TIMEOUT)
        if not token:
            raise ActivationError(ErrorKind.NO_TOKEN)

        ctx.cache.put_for(BEARER_SCOPE, token, ctx.settings.token_cache_seconds)
        return token

    def _display_name(self, title: Optional[str]) -> str:
        name = self.activation.product_name
        if title and (not name or name == LOADING_PRODUCT_NAME):
            return title
        return name

    def _classify_bundle(self, outcome: BundleOutcome) -> ActivationState:
        total = len(outcome.succeeded) + len(outcome.failed)
        if outcome.succeeded and not outcome.failed:
            return Success(product_name=self._display_name(None), keys=outcome.succeeded)
        if outcome.succeeded:
            return PartialSuccess(succeeded=len(outcome.succeeded), total=total, failed=outcome.failed)
        if outcome.only_duplicates_failed:
            if any(f.is_already_owned for f in outcome.failed):
                return AlreadyOwned(products=outcome.owned_products)
            return AlreadyRedeemed()
        first_kind = ErrorKind(outcome.failed[0].kind) if outcome.failed else ErrorKind.UNKNOWN
        return Failed(BUNDLE_FAILED_MESSAGE, first_kind)


__all__ = ["ActivationStateMachine", "ActivationPhase"]
