from __future__ import annotations

import re
from datetime import date

import discord

from .controller import GenerationPhase
from .dates import utc_now
from .models import DateRange, OverrideMode, PolicyContext
from .overrides import MAX_DAILY_CAPACITY, OverrideResolver

USERS_REFRESHED_META_KEY = "users_refreshed_at_utc"
WEEK_KEY_PATTERN = re.compile(r"^\d{4}-W(0[1-9]|[1-4]\d|5[0-3])$")


def parse_override_scope(day: str | None, week: str | None) -> tuple[OverrideMode, str | None]:
    """Work out which kind of override a command targets: one date, one ISO week, or every day."""
    if day and week:
        raise ValueError("Give either a date or a week, not both.")
    if day:
        return OverrideMode.PER_DAY, date.fromisoformat(day.strip()).isoformat()
    if week:
        key = week.strip().upper()
        if not WEEK_KEY_PATTERN.match(key):
            raise ValueError("Week must look like 2025-W07.")
        return OverrideMode.WEEKLY, key
    return OverrideMode.GLOBAL, None


def validate_override_values(capacity: float | None, multiplier: float | None) -> None:
    if capacity is None and multiplier is None:
        raise ValueError("Give a capacity, a multiplier, or both.")
    if capacity is not None and not 0 <= capacity <= MAX_DAILY_CAPACITY:
        raise ValueError(f"Capacity must be between 0 and {MAX_DAILY_CAPACITY} hours.")
    if multiplier is not None and multiplier < 1:
        raise ValueError("Multiplier must be at least 1.")


def phase_message(phase: GenerationPhase, date_range: DateRange, channel_id: int) -> str:
    span = f"`{date_range.start.isoformat()}` to `{date_range.end.isoformat()}`"
    if phase == GenerationPhase.RENDERED:
        return f"Posted overtime report for {span} in <#{channel_id}>."
    if phase == GenerationPhase.FAILED:
        return f"Could not build the report for {span}; the error was posted in <#{channel_id}>."
    return f"The report for {span} was replaced by a newer request."


def register_commands(bot):
    """Register all slash commands on the bot. Called once during setup."""
    guild_scope = discord.Object(id=bot.config.guild_id)

    async def ensure_guild(interaction) -> bool:
        if interaction.guild is None or interaction.guild.id != bot.config.guild_id:
            await interaction.response.send_message("This command can only be used in the configured server.", ephemeral=True)
            return False
        return True

    @bot.tree.command(name="overtime", description="Post an overtime report for a date range", guild=guild_scope)
    @discord.app_commands.describe(start="First day (YYYY-MM-DD)", end="Last day (YYYY-MM-DD)")
    async def overtime(interaction, start: str, end: str):
        if not await ensure_guild(interaction):
            return

        try:
            date_range = DateRange.parse(start, end)
        except ValueError as exc:
            await interaction.response.send_message(f"Invalid date range: {exc}", ephemeral=True)
            return

        if bot.report_channel is None:
            await interaction.response.send_message("Report channel is not available.", ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            generation = await bot.controller.generate_report(bot.build_context(), date_range)
        except Exception as exc:
            bot.logger.exception("/overtime failed")
            await interaction.followup.send(f"Failed to build report: `{exc}`", ephemeral=True)
            return

        await interaction.followup.send(
            phase_message(generation.phase, date_range, bot.config.report_channel_id), ephemeral=True
        )

    @bot.tree.command(name="override", description="Set a capacity or multiplier override for a user", guild=guild_scope)
    @discord.app_commands.describe(
        user_id="Clockify user id",
        capacity="Daily capacity in hours",
        multiplier="Overtime multiplier",
        day="Only this date (YYYY-MM-DD)",
        week="Only this ISO week (YYYY-Www)",
    )
    async def override(
        interaction,
        user_id: str,
        capacity: float | None = None,
        multiplier: float | None = None,
        day: str | None = None,
        week: str | None = None,
    ):
        if not await ensure_guild(interaction):
            return

        try:
            mode, key = parse_override_scope(day, week)
            validate_override_values(capacity, multiplier)
        except ValueError as exc:
            await interaction.response.send_message(f"Invalid override: {exc}", ephemeral=True)
            return

        user_id = user_id.strip()
        if key is None:
            bot.db.set_user_override(user_id, mode, capacity, multiplier)
        else:
            bot.db.set_dated_override(user_id, mode, key, capacity, multiplier)

        resolver = OverrideResolver(PolicyContext(overrides=bot.db.load_overrides()))
        await interaction.response.send_message(
            f"Override saved for `{user_id}`: {resolver.describe(user_id)}", ephemeral=True
        )

    @bot.tree.command(name="clear-override", description="Remove every override for a user", guild=guild_scope)
    @discord.app_commands.describe(user_id="Clockify user id")
    async def clear_override(interaction, user_id: str):
        if not await ensure_guild(interaction):
            return

        if bot.db.delete_override(user_id.strip()):
            await interaction.response.send_message(f"Cleared overrides for `{user_id}`.", ephemeral=True)
        else:
            await interaction.response.send_message(f"No overrides stored for `{user_id}`.", ephemeral=True)

    @bot.tree.command(name="status", description="Show bot configuration and overrides", guild=guild_scope)
    async def status(interaction):
        config = bot.config
        now_local = utc_now().astimezone(config.timezone)
        calc = config.calc_params()
        resolver = OverrideResolver(PolicyContext(overrides=bot.db.load_overrides()))
        override_ids = resolver.user_ids_with_overrides()

        lines = [
            "Overtime report bot status: online",
            f"Workspace: `{config.clockify_workspace_id}`",
            f"Report channel ID: `{config.report_channel_id}`",
            f"Timezone: `{config.timezone.key}` (now `{now_local.isoformat(timespec='seconds')}`)",
            f"Basis: `{calc.overtime_basis.value}`, daily `{calc.daily_threshold:g}h`, "
            f"weekly `{calc.weekly_threshold:g}h`, multiplier `{calc.overtime_multiplier:g}x`",
            f"Amounts shown: `{config.amount_display.value}`",
            f"Cached Clockify users: `{len(bot.users)}` (refreshed `{bot.db.get_meta(USERS_REFRESHED_META_KEY) or 'never'}`)",
            f"Last generation: `{bot.controller.current_generation_id}`",
            f"Calculation worker: `{'running' if bot.worker_channel.is_open else 'idle'}`",
        ]
        if override_ids:
            lines.append("Overrides:")
            lines.extend(f"- `{user_id}`: {resolver.describe(user_id)}" for user_id in override_ids)
        else:
            lines.append("Overrides: none")

        await interaction.response.send_message("\n".join(lines), ephemeral=True)
