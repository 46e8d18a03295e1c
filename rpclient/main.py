"""Composition root for the reporting client.

This module is the ONLY location that imports both core domain logic
and concrete adapter implementations. All wiring of dependencies
happens here.

Module Structure:
- Configuration validation via config module
- Adapter instantiation (REST transport, OAuth, proxy routing, output sink)
- Core service initialization
- Entry point that checks connectivity with settings from the environment
"""

import asyncio
import logging
import sys
from collections.abc import Mapping
from typing import Any

import httpx

from rpclient.adapters.output.launch_uuid import resolve_output
from rpclient.adapters.transport.api import RestReportingApi
from rpclient.adapters.transport.oauth import OAuthBearerAuth, OAuthTokenProvider
from rpclient.adapters.transport.proxy import ProxyResolver, ProxyRoutingTransport
from rpclient.adapters.transport.rest import RestClient
from rpclient.adapters.transport.retry import resolve_retry_policy
from rpclient.config import ClientConfig, ProxyTarget, build_client_config, load_settings
from rpclient.core.helpers import CLIENT_NAME, client_version
from rpclient.core.log_batcher import LogBatcher
from rpclient.core.ports import ReportingApiPort
from rpclient.core.reporting_service import ReportingService


def configure_logging(log_level: str, log_format: str) -> None:
    """Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json, text).
    """
    level = getattr(logging, log_level, logging.INFO)

    if log_format == "json":
        format_str = '{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}'
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


def build_reporting_api(
    config: ClientConfig,
    environ: Mapping[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> RestReportingApi:
    """Wire the REST adapter stack for a validated config.

    Args:
        config: Validated client configuration.
        environ: Environment consulted for proxy variables.
        transport: Overrides proxy routing, e.g. with httpx.MockTransport.
    """
    rest_config = config.rest_client_config
    proxy = rest_config.proxy
    if isinstance(proxy, ProxyTarget):
        proxy = proxy.model_dump()

    if transport is None:
        resolver = ProxyResolver(
            proxy=proxy,
            no_proxy=rest_config.no_proxy,
            environ=environ,
            verify=rest_config.verify,
        )
        transport = ProxyRoutingTransport(resolver)

    headers = {"User-Agent": f"{CLIENT_NAME}/{client_version()}", **config.headers}
    auth = None
    token_provider = None
    if config.oauth is not None:
        token_provider = OAuthTokenProvider(
            token_endpoint=config.oauth.token_endpoint,
            username=config.oauth.username,
            password=config.oauth.password,
            client_id=config.oauth.client_id,
            client_secret=config.oauth.client_secret,
            scope=config.oauth.scope,
            transport=transport,
            timeout=rest_config.timeout,
        )
        auth = OAuthBearerAuth(token_provider)
    else:
        headers["Authorization"] = f"Bearer {config.api_key}"

    rest_client = RestClient(
        base_url=f"{config.endpoint}/{config.project}",
        headers=headers,
        timeout=rest_config.timeout,
        retry_policy=resolve_retry_policy(rest_config.retry),
        auth=auth,
        transport=transport,
        debug=rest_config.debug or config.debug,
    )
    return RestReportingApi(rest_client, token_provider=token_provider)


def create_client(
    options: Mapping[str, Any] | None,
    api: ReportingApiPort | None = None,
) -> ReportingService:
    """Build a reporting client from raw options.

    Never raises on invalid options: the returned client is degraded and
    fails every operation with the configuration error.

    Args:
        options: Client options, see rpclient.config.ClientConfig.
        api: Replaces the REST adapter, mainly for tests.
    """
    logger = logging.getLogger(__name__)
    result = build_client_config(options)
    if result.config is None:
        logger.error("Reporting client is degraded, every operation will fail")
        return ReportingService(None, config_error=result.error)

    config = result.config
    if config.debug:
        logging.getLogger(CLIENT_NAME).setLevel(logging.DEBUG)

    batcher = None
    if config.batch_logs:
        batcher = LogBatcher(config.batch_max_entries, config.batch_payload_limit)

    launch_id_sink = None
    if config.launch_uuid_print:
        launch_id_sink = resolve_output(config.launch_uuid_print_output)

    return ReportingService(
        api or build_reporting_api(config),
        launch_name=config.launch,
        launch_defaults=config.launch_defaults(),
        skipped_issue=config.skipped_issue,
        launch_id_sink=launch_id_sink,
        batcher=batcher,
        launch_merge_required=config.is_launch_merge_required,
    )


async def bootstrap() -> None:
    """Load settings from the environment and verify the collector.

    Steps:
    1. Load configuration from environment
    2. Configure logging
    3. Build the client
    4. Check the connection with one authenticated read

    Raises:
        SystemExit: When the configuration is invalid.
    """
    settings = load_settings()
    configure_logging(settings.log_level, settings.log_format)
    logger = logging.getLogger(__name__)

    client = create_client(settings.to_client_options())
    if client.is_degraded:
        logger.error(f"Invalid configuration: {client.config_error}")
        sys.exit(1)

    try:
        await client.check_connect()
        logger.info(f"Connected to {settings.endpoint}, project {settings.project}")
    finally:
        await client.aclose()


def main() -> None:
    """Application entry point.

    Exit codes:
        0: Connection check succeeded
        1: Invalid configuration or connection failure
        130: Interrupted by user (SIGINT/KeyboardInterrupt)
    """
    logger = logging.getLogger(__name__)
    try:
        asyncio.run(bootstrap())
    except KeyboardInterrupt:
        logger.warning("Shutdown requested by user (SIGINT)")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
