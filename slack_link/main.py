# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Main entry point for the Slack linking service.

Loads configuration, wires the components together and starts the HTTP
server.
"""

import os
from typing import Optional

import redis.asyncio as redis
from aiohttp import web
from dotenv import load_dotenv

from slack_link.account_directory import AccountDirectory, HostAccountDirectory
from slack_link.api import CallerResolver, SlackLinkAPI, header_caller_resolver
from slack_link.config import SlackLinkConfig
from slack_link.dispatcher import MessageDispatcher
from slack_link.identity_resolver import ClientFactory, SlackIdentityResolver
from slack_link.installation_store import (
    InMemoryInstallationStore,
    InstallationStore,
    PostgresInstallationStore,
)
from slack_link.logging_config import get_logger, setup_logging
from slack_link.message_queue import LoggingMessageSink, MessagePersistenceQueue, MessageSink
from slack_link.oauth_linker import OAuthLinker, OAuthSettings
from slack_link.webhook_gate import SignatureValidator, WebhookDeduplicator, WebhookGate
from slack_link.workspace_admin import WorkspaceAdministration


logger = get_logger(__name__)


def build_store(config: SlackLinkConfig) -> InstallationStore:
    if config.database_url:
        return PostgresInstallationStore(config.database_url, config.encryption_key)
    logger.warning("DATABASE_URL not set, installations are kept in memory")
    return InMemoryInstallationStore()


def build_application(
    config: SlackLinkConfig,
    store: Optional[InstallationStore] = None,
    account_directory: Optional[AccountDirectory] = None,
    message_sink: Optional[MessageSink] = None,
    caller_resolver: Optional[CallerResolver] = None,
    redis_client: Optional[object] = None,
    slack_client_factory: Optional[ClientFactory] = None
) -> web.Application:
    """
    Build the aiohttp application with all components wired.

    Every collaborator can be injected; defaults come from configuration.
    """
    # An empty InMemoryInstallationStore is falsy
    if store is None:
        store = build_store(config)
    if account_directory is None:
        account_directory = HostAccountDirectory(config.host_api_url, config.host_api_token)
    if message_sink is None:
        message_sink = LoggingMessageSink()
    if caller_resolver is None:
        caller_resolver = header_caller_resolver()

    if redis_client is None and config.redis_url:
        redis_client = redis.from_url(config.redis_url)

    dispatcher = MessageDispatcher(store, client_factory=slack_client_factory)
    linker = OAuthLinker(
        OAuthSettings.from_config(config),
        store,
        SlackIdentityResolver(account_directory, client_factory=slack_client_factory),
    )
    persistence_queue = MessagePersistenceQueue(message_sink, max_workers=config.persistence_workers)
    gate = WebhookGate(
        persistence_queue,
        dispatcher,
        WebhookDeduplicator(redis_client=redis_client, ttl_seconds=config.dedup_ttl_seconds),
    )
    signature_validator = (
        SignatureValidator(config.slack_signing_secret) if config.slack_signing_secret else None
    )

    api = SlackLinkAPI(
        linker=linker,
        gate=gate,
        dispatcher=dispatcher,
        admin=WorkspaceAdministration(store),
        caller_resolver=caller_resolver,
        signature_validator=signature_validator,
    )

    async def on_startup(app: web.Application) -> None:
        if isinstance(store, PostgresInstallationStore):
            await store.connect()
            await store.initialize_schema()
        await persistence_queue.start()

    async def on_cleanup(app: web.Application) -> None:
        await persistence_queue.stop()
        if isinstance(store, PostgresInstallationStore):
            await store.disconnect()
        if isinstance(account_directory, HostAccountDirectory):
            await account_directory.close()
        if redis_client is not None:
            await redis_client.aclose()

    api.app.on_startup.append(on_startup)
    api.app.on_cleanup.append(on_cleanup)
    return api.app


def main() -> None:
    """Main application entry point."""
    env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
    if os.path.exists(env_path):
        load_dotenv(env_path, override=False)
    else:
        load_dotenv(override=False)

    try:
        config = SlackLinkConfig.from_env()
        config.validate()
    except KeyError as e:
        logger.error(f"Missing required environment variable: {e}")
        raise
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        raise

    setup_logging(log_level=config.log_level, log_format=config.log_format)

    logger.info("Starting Slack link service", extra={
        'host': config.host,
        'port': config.port,
        'persistent_store': bool(config.database_url),
        'redis_dedup': bool(config.redis_url),
    })

    web.run_app(build_application(config), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
