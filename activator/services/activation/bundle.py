"""
Bundle coordination: redeems an ordered list of keys as one unit.

Keys are attempted strictly in input order, each exactly once (transport
retries happen inside the redeemer). A failing key never aborts the bundle.
After every key an immutable BundleProgress snapshot is published.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from activator.core.structured_logger import log_event, mask_key
from activator.services.activation.exceptions import (
    ActivationCancelled,
    ActivationError,
    AlreadyOwnedError,
    BundleStateError,
    ErrorKind,
)
from activator.services.activation.models import BundleOutcome, BundleProgress, KeyFailure
from activator.services.activation.redeemer import AuthContext, KeyRedeemer
from activator.utils.logging_helpers import classify_error
from activator.utils.retry import TRANSIENT_EXCEPTIONS

logger = logging.getLogger(__name__)

ProgressListener = Callable[[BundleProgress], None]


@dataclass
class KeyState:
    attempts: int = 0
    last_error: Optional[ActivationError] = None
    success: bool = False


@dataclass
class BundleActivationState:
    """Per-key records for one bundle run. Never shared outside the coordinator."""
    keys: Sequence[str]
    key_states: Dict[str, KeyState] = field(default_factory=dict)

    def __post_init__(self):
        for key in self.keys:
            self.key_states.setdefault(key, KeyState())

    def record_success(self, key: str) -> None:
        state = self.key_states[key]
        state.attempts += 1
        state.success = True

    def record_failure(self, key: str, error: ActivationError) -> None:
        state = self.key_states[key]
        if state.success:
            raise BundleStateError(f"key already succeeded: {mask_key(key)}")
        state.attempts += 1
        state.last_error = error

    def is_successful(self, key: str) -> bool:
        return self.key_states[key].success


class BundleCoordinator:
    """
    Drives KeyRedeemer across the keys of one bundle.

    Args:
        redeemer: Single-key redeemer
        key_delay: Pause after a successful key when more keys remain
        sleep: Awaitable sleep for the pause (cancellable through the token)
        correlation_id: Run id used in log events
    """

    def __init__(
        self,
        redeemer: KeyRedeemer,
        *,
        key_delay: float = 3.0,
        correlation_id: Optional[str] = None,
        sleep=None,
    ):
        self.redeemer = redeemer
        self.key_delay = key_delay
        self.correlation_id = correlation_id
        self._sleep = sleep or asyncio.sleep

    async def _pause(self, cancellation) -> None:
        if self.key_delay <= 0:
            return
        if cancellation is not None:
            await cancellation.sleep(self.key_delay, sleep=self._sleep)
        else:
            await self._sleep(self.key_delay)

    async def _redeem_one(self, key: str, auth: AuthContext, cancellation) -> None:
        try:
            await self.redeemer.redeem(key, auth, cancellation)
        except ActivationError as e:
            if e.kind != ErrorKind.CONVERSION_REQUIRED:
                raise
            logger.info("Bundle key needs conversion: key=%s", mask_key(key))
            await self.redeemer.convert(key, auth, cancellation)

    async def run(
        self,
        keys: Sequence[str],
        auth: AuthContext,
        *,
        on_progress: Optional[ProgressListener] = None,
        cancellation=None,
    ) -> BundleOutcome:
        """
        Attempt every key once, in order.

        Returns:
            BundleOutcome with succeeded keys and per-key failures

        Raises:
            ActivationCancelled: cancelled between keys; its `outcome` holds
                the results reached so far plus the unattempted keys
        """
        keys = list(keys)
        state = BundleActivationState(keys)
        succeeded: List[str] = []
        failed: List[KeyFailure] = []
        owned: List[str] = []
        progress = BundleProgress(total=len(keys))

        def publish(current_key: Optional[str], current_index: Optional[int]) -> None:
            nonlocal progress
            progress = BundleProgress(
                total=len(keys),
                completed=len(succeeded) + len(failed),
                succeeded=len(succeeded),
                failed=len(failed),
                current_key=current_key,
                current_index=current_index,
            )
            if on_progress is not None:
                try:
                    on_progress(progress)
                except Exception:
                    logger.exception("Bundle progress listener failed")

        def partial(from_index: int) -> BundleOutcome:
            return BundleOutcome(
                succeeded=tuple(succeeded),
                failed=tuple(failed),
                unattempted=tuple(keys[from_index:]),
                owned_products=tuple(owned),
            )

        for index, key in enumerate(keys):
            if cancellation is not None and cancellation.cancelled:
                raise ActivationCancelled(partial(index))

            logger.info("Bundle key %d/%d: key=%s", index + 1, len(keys), mask_key(key))

            error: Optional[ActivationError] = None
            try:
                await self._redeem_one(key, auth, cancellation)
            except ActivationCancelled:
                raise ActivationCancelled(partial(index))
            except ActivationError as e:
                error = e
            except TRANSIENT_EXCEPTIONS as e:
                # Retries exhausted on an unmapped transport failure
                logger.warning("Bundle key transport failure: key=%s error=%s", mask_key(key), type(e).__name__)
                error = ActivationError(ErrorKind.NETWORK_ERROR, type(e).__name__)
            except Exception as e:
                logger.exception("Bundle key failed unexpectedly: key=%s", mask_key(key))
                error = ActivationError(ErrorKind.UNKNOWN, classify_error(e))

            if error is not None:
                state.record_failure(key, error)
                if isinstance(error, AlreadyOwnedError):
                    owned.extend(p for p in error.products if p not in owned)
                failed.append(KeyFailure(
                    key=key,
                    error=error.message,
                    kind=error.kind.value,
                    is_already_owned=error.kind == ErrorKind.ALREADY_OWNED,
                    is_already_redeemed=error.kind == ErrorKind.ALREADY_REDEEMED,
                ))
                log_event(
                    logger,
                    component="bundle",
                    operation="redeem_key",
                    correlation_id=self.correlation_id,
                    outcome="failed",
                    reason=error.kind.value,
                    level="warning",
                )
                publish(key, index)
                continue

            state.record_success(key)
            succeeded.append(key)
            publish(key, index)

            if index + 1 < len(keys):
                try:
                    await self._pause(cancellation)
                except ActivationCancelled:
                    raise ActivationCancelled(partial(index + 1))

        if progress.completed != len(keys):
            raise BundleStateError(f"attempted {progress.completed} of {len(keys)} keys")
        log_event(
            logger,
            component="bundle",
            operation="bundle_complete",
            correlation_id=self.correlation_id,
            outcome="success" if not failed else ("degraded" if succeeded else "failed"),
            reason=f"succeeded={len(succeeded)} failed={len(failed)}",
        )
        return BundleOutcome(succeeded=tuple(succeeded), failed=tuple(failed), owned_products=tuple(owned))
