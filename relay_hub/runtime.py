"""Hub runtime composing the Discord client, the store and the peer server."""

from __future__ import annotations

import asyncio
import logging

import boto3
import discord

from .config import HubConfig
from .console import OperatorConsole
from .correlator import RequestCorrelator
from .dispatch import PlatformDispatcher
from .platform import DiscordPlatform
from .policy import ConnectionOptions
from .registry import SessionRegistry
from .session import PeerSession
from .storage import AccountStore
from .transport import PeerServer
from .verification import VerificationWorkflow

log = logging.getLogger("relay-hub")


class HubRuntime:
    def __init__(self, config: HubConfig, *, table=None) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.message_content = True
        intents.reactions = True

        self.config = config
        self.bot = discord.Client(intents=intents)
        if table is None:
            dynamodb = boto3.resource("dynamodb", region_name=config.aws_region)
            table = dynamodb.Table(config.table_name)
        self.store = AccountStore(table)
        self.platform = DiscordPlatform(self.bot)
        self.workflow = VerificationWorkflow(
            self.store,
            self.platform,
            ttl_seconds=config.verification_ttl_minutes * 60,
        )
        self.correlator = RequestCorrelator(self.store, self.platform, self.workflow)
        self.registry = SessionRegistry(self.store, self.create_session)
        self.dispatcher = PlatformDispatcher(
            self.registry, self.store, self.platform, self.workflow
        )
        self.server = PeerServer(
            self.registry,
            path=config.socket_path,
            heartbeat=config.heartbeat_seconds or None,
        )
        self.console = OperatorConsole(self.store, self.shutdown)
        self._stopping = asyncio.Event()
        self._register_events()

    def create_session(self, options: ConnectionOptions, connection) -> PeerSession:
        return PeerSession(
            options,
            connection,
            store=self.store,
            platform=self.platform,
            workflow=self.workflow,
            correlator=self.correlator,
        )

    def _register_events(self) -> None:
        bot = self.bot

        @bot.event
        async def on_ready() -> None:
            log.info("Logged in as: %s - (%s)", bot.user, bot.user.id)

        @bot.event
        async def on_message(message: discord.Message) -> None:
            await self.dispatcher.on_message(message)

        @bot.event
        async def on_raw_reaction_add(payload: discord.RawReactionActionEvent) -> None:
            await self.dispatcher.on_reaction(payload)

        @bot.event
        async def on_raw_reaction_remove(payload: discord.RawReactionActionEvent) -> None:
            await self.dispatcher.on_reaction(payload)

    async def shutdown(self) -> None:
        self._stopping.set()

    async def run(self) -> None:
        await self.server.start(self.config.host, self.config.port)
        console_task = None
        if self.config.console_enabled:
            console_task = asyncio.create_task(self.console.run())

        try:
            async with self.bot:
                bot_task = asyncio.create_task(self.bot.start(self.config.discord_token))
                stop_task = asyncio.create_task(self._stopping.wait())
                done, _ = await asyncio.wait(
                    {bot_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
                )
                stop_task.cancel()
                if bot_task in done:
                    bot_task.result()
                else:
                    await self.bot.close()
                    await bot_task
        finally:
            if console_task is not None:
                console_task.cancel()
            await self.registry.close_all()
            await self.server.stop()
            log.info("Relay hub stopped")

    @classmethod
    def create(cls) -> "HubRuntime":
        config = HubConfig.load()
        return cls(config)


async def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    runtime = HubRuntime.create()
    await runtime.run()


def cli() -> None:
    asyncio.run(main())


__all__ = ["HubRuntime", "cli", "main"]
