from __future__ import annotations

import logging

import discord
from discord.ext import commands
from dotenv import load_dotenv

from .api import ClockifyApi
from .commands import USERS_REFRESHED_META_KEY, register_commands
from .config import Config, load_config
from .controller import ReportContext, RequestGenerationController
from .dates import utc_now
from .db import Database
from .dispatcher import CalculationDispatcher, WorkerChannel
from .errors import TransportFailure
from .models import User
from .reporter import Reporter


class OvertimeReportBot(commands.Bot):
    def __init__(self, config: Config, db: Database) -> None:
        intents = discord.Intents.none()
        intents.guilds = True

        super().__init__(command_prefix="!", intents=intents)

        self.config = config
        self.db = db
        self.logger = logging.getLogger("overtime-report-bot")

        self.api = ClockifyApi(
            config.clockify_api_key,
            config.clockify_base_url,
            config.clockify_reports_url,
        )
        self.worker_channel = WorkerChannel()
        self.dispatcher = CalculationDispatcher(self.worker_channel, threshold=config.worker_offload_threshold)
        self.reporter = Reporter(amount_display=config.amount_display)
        self.controller = RequestGenerationController(self.api, self.dispatcher, self.reporter)

        # runtime_ready prevents commands from running before channel/permission checks pass.
        self.runtime_ready = False
        self.report_channel: discord.TextChannel | None = None
        self.users: tuple[User, ...] = ()

    async def setup_hook(self) -> None:
        register_commands(self)
        await self.tree.sync(guild=discord.Object(id=self.config.guild_id))
        await self.refresh_users()

    async def on_ready(self) -> None:
        self.logger.info("Connected as %s (%s)", self.user, self.user.id if self.user else "unknown")
        if self.runtime_ready:
            return

        if await self._validate_runtime_resources():
            self.runtime_ready = True
            self.logger.info("Runtime checks passed")

    async def _validate_runtime_resources(self) -> bool:
        # Fail fast if the guild, report channel or its permissions are misconfigured.
        guild = self.get_guild(self.config.guild_id)
        if guild is None:
            self.logger.error("Configured guild %s not found", self.config.guild_id)
            await self.close()
            return False

        report = guild.get_channel(self.config.report_channel_id)
        if not isinstance(report, discord.TextChannel):
            self.logger.error("Report channel %s is missing or not a text channel", self.config.report_channel_id)
            await self.close()
            return False

        me = guild.me
        if me is None and self.user is not None:
            me = guild.get_member(self.user.id)

        if me is None:
            self.logger.error("Unable to resolve bot member in guild %s", guild.id)
            await self.close()
            return False

        perms = report.permissions_for(me)
        if not perms.view_channel or not perms.send_messages:
            self.logger.error("Missing view/send permission in report channel %s", report.id)
            await self.close()
            return False

        self.report_channel = report
        self.reporter.channel = report
        return True

    async def refresh_users(self) -> int:
        """Reload the workspace member list; keeps the previous cache when Clockify is unreachable."""
        try:
            users = await self.api.fetch_users(self.config.clockify_workspace_id)
        except TransportFailure as exc:
            self.logger.warning("Could not load Clockify users: %s", exc)
            return len(self.users)

        self.users = tuple(users)
        self.db.set_meta(USERS_REFRESHED_META_KEY, utc_now().isoformat())
        self.logger.info("Loaded %d Clockify users", len(self.users))
        return len(self.users)

    def build_context(self) -> ReportContext:
        return ReportContext(
            workspace_id=self.config.clockify_workspace_id,
            users=self.users,
            overrides=self.db.load_overrides(),
            options=self.config.report_options(),
            calc_params=self.config.calc_params(),
            timezone=self.config.timezone.key,
        )

    async def close(self) -> None:
        await self.worker_channel.aclose()
        await self.api.aclose()
        self.db.close()
        await super().close()


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    # Request lines from the HTTP client would drown out report activity.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def main() -> None:
    load_dotenv()
    configure_logging()

    config = load_config()
    db = Database(config.database_path)
    db.initialize()

    bot = OvertimeReportBot(config=config, db=db)
    bot.run(config.discord_token)


if __name__ == "__main__":
    main()
