from __future__ import annotations

import logging
from typing import Protocol

from .models import AmountDisplay, DateRange, UserAnalysis

try:
    import discord
except ModuleNotFoundError:  # pragma: no cover - allows tests without discord.py installed
    discord = None

# Discord rejects messages longer than 2000 characters.
MESSAGE_LIMIT = 2000


def format_hours(hours: float) -> str:
    """Render fractional hours as H:MM for consistent report output."""
    total_minutes = max(0, round(hours * 60))
    whole_hours, minutes = divmod(total_minutes, 60)
    return f"{whole_hours}:{minutes:02}"


def format_amount(amount: float) -> str:
    return f"{amount:,.2f}"


class ReportChannelLike(Protocol):
    async def send(self, content: str, **kwargs): ...


_AMOUNT_LABELS = {AmountDisplay.EARNED: "billed", AmountDisplay.COST: "cost", AmountDisplay.PROFIT: "profit"}


def _user_line(user: UserAnalysis, display: AmountDisplay = AmountDisplay.EARNED) -> str:
    totals = user.totals
    line = (
        f"- **{user.user_name or user.user_id}**: total `{format_hours(totals.total)}`, "
        f"regular `{format_hours(totals.regular)}`, overtime `{format_hours(totals.overtime)}`"
    )

    extras = []
    if totals.breaks > 0:
        extras.append(f"breaks {format_hours(totals.breaks)}")
    if totals.holiday_count:
        extras.append(f"holidays {totals.holiday_count}")
    if totals.time_off_count:
        extras.append(f"time off {format_hours(totals.time_off_hours)}")
    amount, overtime_amount = totals.amounts(display)
    # Profit goes negative when cost outruns billing.
    if amount != 0:
        extras.append(
            f"{_AMOUNT_LABELS[display]} {format_amount(amount)} (OT {format_amount(overtime_amount)})"
        )
    if extras:
        line += f" ({'; '.join(extras)})"
    return line


def split_message(lines: list[str], limit: int = MESSAGE_LIMIT) -> list[str]:
    chunks: list[str] = []
    current = ""
    for line in lines:
        if len(line) > limit:
            line = line[: limit - 3] + "..."
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


class Reporter:
    """Posts rendered overtime reports and error banners to the report channel."""

    def __init__(
        self,
        channel: ReportChannelLike | None = None,
        logger: logging.Logger | None = None,
        amount_display: AmountDisplay = AmountDisplay.EARNED,
    ) -> None:
        self.channel = channel
        self.amount_display = amount_display
        self.logger = logger or logging.getLogger(__name__)

    def build_report_content(self, analysis: list[UserAnalysis], date_range: DateRange) -> list[str]:
        header = f"**Overtime Report - {date_range.start.isoformat()} to {date_range.end.isoformat()}**"

        users = [user for user in analysis if user.totals.total > 0 or user.totals.expected_capacity > 0]
        if not users:
            return [f"{header}\nNo tracked time in this range."]

        # Biggest overtime first so the report leads with what needs attention.
        users.sort(key=lambda item: (-item.totals.overtime, (item.user_name or item.user_id).lower()))

        total_overtime = sum(user.totals.overtime for user in users)
        total_hours = sum(user.totals.total for user in users)
        lines = [
            header,
            f"Users: {len(users)} | Hours: `{format_hours(total_hours)}` | Overtime: `{format_hours(total_overtime)}`",
        ]
        lines.extend(_user_line(user, self.amount_display) for user in users)
        return split_message(lines)

    async def _send(self, content: str) -> None:
        if self.channel is None:
            raise RuntimeError("Report channel is not available")

        kwargs = {}
        if discord is not None:
            # Never ping users in automated reports.
            kwargs["allowed_mentions"] = discord.AllowedMentions.none()
        await self.channel.send(content, **kwargs)

    async def render(self, analysis: list[UserAnalysis], date_range: DateRange) -> None:
        for chunk in self.build_report_content(analysis, date_range):
            await self._send(chunk)

    async def show_error(self, message: str) -> None:
        self.logger.warning("Showing report error: %s", message)
        await self._send(f":warning: {message}")
