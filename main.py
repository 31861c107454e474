import argparse
import asyncio
import json
import logging
import sys

# Configure logging FIRST (before any other imports that may log)
# Routes INFO/WARNING → stdout, ERROR/CRITICAL → stderr
from activator.core.logging_config import setup_logging

import config
setup_logging(config.LOG_LEVEL)

import httpx

from activator.clients import AccountClient, CatalogClient, SessionClient, StorefrontClient
from activator.core.structured_logger import log_event
from activator.services.activation import (
    ActivationContext,
    ActivationError,
    ActivationSettings,
    ActivationStateMachine,
    ErrorKind,
    PendingActivation,
    parse_deep_link,
    parse_external_message,
    resolve,
)
from activator.services.activation.sources import MANUAL_PRODUCT_NAME, DeepLink, InApp
from activator.utils.logging_helpers import generate_correlation_id

logger = logging.getLogger(__name__)


class StaticTokenCapture:
    """Token capture backed by a token passed on the command line or in the environment."""

    def __init__(self, token: str):
        self.token = token

    async def capture(self) -> str:
        if not self.token:
            raise ActivationError(ErrorKind.NO_TOKEN)
        return self.token


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Activate store product keys")
    parser.add_argument("target", nargs="?", help="Activation link or session token")
    parser.add_argument("--bearer-token", default=None, help="Storefront bearer token")
    parser.add_argument("--key", action="append", default=None, help="Product key (repeat for a bundle)")
    parser.add_argument("--region", default=None, help="Key region for --key activations")
    parser.add_argument("--account-token", default=None, help="Account session token for the region check")
    parser.add_argument("--origin", default=None, help="Origin of a forwarded activation message given as target")
    parser.add_argument("--skip-diagnostics", action="store_true")
    return parser.parse_args(argv)


def build_activation(args: argparse.Namespace, settings: ActivationSettings):
    vendor = settings.default_vendor
    if args.key:
        region = args.region or settings.default_region
        if len(args.key) == 1:
            return resolve(InApp(product_key=args.key[0], region=region), settings.default_region, vendor)
        return PendingActivation.create(
            product_keys=args.key, region=region, product_name=MANUAL_PRODUCT_NAME, vendor=vendor
        )

    if not args.target:
        raise ValueError("an activation link, a session token or --key is required")
    if args.origin:
        try:
            message = json.loads(args.target)
        except ValueError as e:
            raise ValueError("a forwarded message must be a JSON object") from e
        source = parse_external_message(args.origin, message, settings.allowed_message_origins)
        if source is None:
            raise ValueError(f"message from {args.origin} was not accepted")
        return resolve(source, settings.default_region, vendor)

    source = parse_deep_link(args.target, config.DEEP_LINK_SCHEMES, config.PORTAL_HOST)
    if source is None:
        source = DeepLink(session_token=args.target)
    return resolve(source, settings.default_region, vendor)


def build_context(args: argparse.Namespace, settings: ActivationSettings) -> ActivationContext:
    timeout = httpx.Timeout(config.HTTP_TIMEOUT, connect=5.0)
    sessions = SessionClient(
        config.SESSION_API_URL,
        config.SESSION_API_KEY,
        game_pass_ids=settings.game_pass_product_ids,
        proxy_ttl=settings.proxy_credentials_ttl,
        timeout=timeout,
    )
    account = AccountClient(config.ACCOUNT_API_URL, game_pass_ids=settings.game_pass_product_ids, timeout=timeout)
    return ActivationContext(
        storefront=StorefrontClient(config.STOREFRONT_API_URL, timeout=timeout),
        settings=settings,
        sessions=sessions,
        reporter=sessions,
        proxy_source=sessions if config.SESSION_API_KEY else None,
        portal_links=sessions,
        catalog=CatalogClient(config.CATALOG_API_URL, timeout=timeout),
        account=account if args.account_token else None,
        subscriptions=account if args.account_token else None,
        token_capture=StaticTokenCapture(args.bearer_token or config.ACTIVATION_BEARER_TOKEN),
    )


async def main(argv=None) -> int:
    args = parse_args(argv)
    settings = ActivationSettings.from_config()
    correlation_id = generate_correlation_id()

    try:
        activation = build_activation(args, settings)
    except ValueError as e:
        logger.error("Invalid activation request: %s", e)
        return 2

    context = build_context(args, settings)
    machine = ActivationStateMachine(
        context,
        activation,
        account_token=args.account_token,
        run_diagnostics=not args.skip_diagnostics,
        correlation_id=correlation_id,
    )
    machine.subscribe_progress(
        lambda p: logger.info("Bundle progress: %d/%d (%d failed)", p.completed, p.total, p.failed)
    )

    log_event(logger, component="cli", operation="activation_started", correlation_id=correlation_id)
    try:
        final = await machine.run()
    finally:
        await context.aclose()

    print(f"{final.phase.value}: {final.description}")
    return 0 if final.phase.value in ("success", "partial_success") else 1


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Activation interrupted")
        sys.exit(130)
