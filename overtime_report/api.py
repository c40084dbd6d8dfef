from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import urlparse

import httpx

from .cancellation import AbortSignal, race_signal
from .dates import day_bounds_utc, iter_days, parse_date_key, parse_iso_utc
from .errors import TransportFailure
from .models import Holiday, Profile, TimeOffInfo, User
from .normalizer import normalize_profile

DEFAULT_BASE_URL = "https://api.clockify.me/api"
DEFAULT_REPORTS_URL = "https://reports.api.clockify.me"
PAGE_SIZE = 200
BATCH_SIZE = 5
DEFAULT_MAX_PAGES = 50
REPORT_AMOUNTS = ("EARNED", "COST", "PROFIT")


def resolve_reports_url(base_url: str, reports_url: str | None = None) -> str:
    """Derive the Reports API host from the regular API base URL when none is configured."""
    if reports_url:
        return reports_url.rstrip("/")

    parsed = urlparse(base_url)
    host = parsed.hostname or ""
    if host == "api.clockify.me":
        return DEFAULT_REPORTS_URL
    if host.endswith(".api.clockify.me"):
        # Regional hosts serve reports under /report on the same origin.
        return f"{parsed.scheme}://{parsed.netloc}/report"
    if host.endswith("clockify.me"):
        return base_url.rstrip("/")
    return DEFAULT_REPORTS_URL


def _normalize_timestamp(value: Any) -> str:
    if value is None:
        return ""
    text = str(value).strip()
    if text and "T" not in text and len(text) > 10 and text[10] == " ":
        return f"{text[:10]}T{text[11:]}"
    return text


def _rate_amount(value: Any) -> float:
    if isinstance(value, Mapping):
        value = value.get("amount")
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    return amount if math.isfinite(amount) else 0.0


def transform_report_entry(item: Mapping[str, Any]) -> dict[str, Any]:
    """Reshape a detailed-report row into the time-entry payload the normalizer reads."""
    interval = item.get("timeInterval") or {}
    duration = interval.get("duration")
    billable = item.get("billable") is True
    candidates = (item.get("earnedRate"), item.get("rate"), item.get("hourlyRate"))
    hourly_rate = next((amount for amount in map(_rate_amount, candidates) if amount > 0), 0.0)
    earned_rate = _rate_amount(item.get("earnedRate"))

    return {
        "id": item.get("_id") or item.get("id") or "",
        "description": item.get("description") or "",
        "userId": item.get("userId") or "",
        "userName": item.get("userName") or "",
        "billable": billable,
        "type": item.get("type") or "REGULAR",
        "timeInterval": {
            "start": _normalize_timestamp(interval.get("start")),
            "end": _normalize_timestamp(interval.get("end")),
            # The Reports API returns whole seconds.
            "duration": f"PT{duration}S" if duration is not None else None,
        },
        "hourlyRate": {"amount": hourly_rate},
        "earnedRate": (earned_rate or hourly_rate) if billable else 0,
        "costRate": _rate_amount(item.get("costRate")),
    }


def _time_off_hours(period: Mapping[str, Any], inner: Mapping[str, Any]) -> float:
    half_day_hours = period.get("halfDayHours")
    if isinstance(half_day_hours, (int, float)) and not isinstance(half_day_hours, bool) and half_day_hours > 0:
        return float(half_day_hours)

    start = parse_iso_utc(inner.get("start") or period.get("start") or period.get("startDate"))
    end = parse_iso_utc(inner.get("end") or period.get("end") or period.get("endDate"))
    if start is None or end is None or end <= start:
        return 0.0

    seconds = (end - start).total_seconds()
    # Spread multi-day requests evenly so each day carries its share, not the whole total.
    days = max(1, math.ceil(seconds / 86400))
    return seconds / 3600 / days


def build_time_off_index(requests: Sequence[Mapping[str, Any]]) -> dict[str, dict[str, TimeOffInfo]]:
    results: dict[str, dict[str, TimeOffInfo]] = {}
    for request in requests:
        status = request.get("status")
        status_type = status.get("statusType") if isinstance(status, Mapping) else status
        if status_type != "APPROVED":
            continue

        user_id = request.get("userId") or request.get("requesterUserId")
        if not user_id:
            continue

        period = request.get("timeOffPeriod") or {}
        inner = period.get("period") or {}
        start = parse_date_key(inner.get("start") or period.get("start") or period.get("startDate"))
        if start is None:
            continue
        end = parse_date_key(inner.get("end") or period.get("end") or period.get("endDate")) or start

        unit = str(request.get("timeUnit") or "").upper()
        half_day = bool(period.get("halfDay"))
        if unit in ("DAYS", "DAY"):
            is_full_day = not half_day
        else:
            is_full_day = unit not in ("HOURS", "HOUR") and not half_day and not period.get("halfDayHours")

        info = TimeOffInfo(is_full_day=is_full_day, hours=0.0 if is_full_day else _time_off_hours(period, inner))
        user_days = results.setdefault(user_id, {})
        for day in iter_days(start, end):
            user_days.setdefault(day.isoformat(), info)
    return results


class ClockifyApi:
    """Thin async client for the Clockify endpoints the report needs.

    Every call accepts the generation's AbortSignal and raises AbortedOutcome once it
    fires. HTTP and connection errors surface as TransportFailure; nothing is retried.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        reports_url: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        max_pages: int = DEFAULT_MAX_PAGES,
        logger: logging.Logger | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.reports_url = resolve_reports_url(self.base_url, reports_url)
        self.max_pages = max_pages
        self.logger = logger or logging.getLogger(__name__)
        self._client = client or httpx.AsyncClient(timeout=30)
        self._headers = {"X-Api-Key": api_key, "Accept": "application/json"}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        signal: AbortSignal | None = None,
        params: dict[str, str] | None = None,
        json: Any = None,
    ) -> Any:
        try:
            response = await race_signal(
                self._client.request(method, url, params=params, json=json, headers=self._headers),
                signal,
            )
        except httpx.HTTPError as exc:
            raise TransportFailure(f"{method} {urlparse(url).path} failed: {exc}") from exc

        if response.status_code >= 400:
            raise TransportFailure(
                f"{method} {urlparse(url).path} returned HTTP {response.status_code}",
                status=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TransportFailure(f"{method} {urlparse(url).path} returned invalid JSON") from exc

    def _workspace_url(self, workspace_id: str, path: str) -> str:
        return f"{self.base_url}/v1/workspaces/{workspace_id}/{path}"

    async def fetch_users(self, workspace_id: str, *, signal: AbortSignal | None = None) -> list[User]:
        data = await self._request("GET", self._workspace_url(workspace_id, "users"), signal=signal)
        return [User(id=str(item["id"]), name=str(item.get("name") or "")) for item in data or [] if item.get("id")]

    async def fetch_detailed_report(
        self,
        workspace_id: str,
        start_iso: str,
        end_iso: str,
        *,
        signal: AbortSignal | None = None,
    ) -> list[dict[str, Any]]:
        url = f"{self.reports_url}/v1/workspaces/{workspace_id}/reports/detailed"
        entries: list[dict[str, Any]] = []

        for page in range(1, self.max_pages + 1):
            body = {
                "dateRangeStart": start_iso,
                "dateRangeEnd": end_iso,
                "amounts": list(REPORT_AMOUNTS),
                "detailedFilter": {"page": page, "pageSize": PAGE_SIZE},
            }
            data = await self._request("POST", url, json=body, signal=signal)
            rows = (data or {}).get("timeentries") or (data or {}).get("timeEntries") or []
            entries.extend(transform_report_entry(row) for row in rows)

            if len(rows) < PAGE_SIZE:
                break
        else:
            self.logger.warning("Reached page limit (%d); report truncated at %d entries", self.max_pages, len(entries))

        return entries

    async def _fetch_profile(self, workspace_id: str, user_id: str, signal: AbortSignal | None) -> Profile:
        data = await self._request(
            "GET", self._workspace_url(workspace_id, f"member-profile/{user_id}"), signal=signal
        )
        return normalize_profile(data or {})

    async def fetch_all_profiles(
        self,
        workspace_id: str,
        users: Sequence[User],
        *,
        signal: AbortSignal | None = None,
    ) -> dict[str, Profile]:
        profiles: dict[str, Profile] = {}
        for user_id, outcome in await self._per_user(
            users, lambda user: self._fetch_profile(workspace_id, user.id, signal)
        ):
            profiles[user_id] = outcome
        return profiles

    async def _fetch_holidays(
        self,
        workspace_id: str,
        user_id: str,
        start_iso: str,
        end_iso: str,
        signal: AbortSignal | None,
    ) -> list[Holiday]:
        data = await self._request(
            "GET",
            self._workspace_url(workspace_id, "holidays/in-period"),
            params={"assigned-to": user_id, "start": start_iso, "end": end_iso},
            signal=signal,
        )
        holidays = []
        for item in data or []:
            period = item.get("datePeriod") or {}
            start = period.get("startDate") or ""
            holidays.append(Holiday(name=item.get("name") or "", start_date=start, end_date=period.get("endDate") or start))
        return holidays

    async def fetch_all_holidays(
        self,
        workspace_id: str,
        users: Sequence[User],
        start_date: str,
        end_date: str,
        *,
        signal: AbortSignal | None = None,
    ) -> dict[str, list[Holiday]]:
        start_iso, end_iso = day_bounds_utc(start_date, end_date)
        holidays: dict[str, list[Holiday]] = {}
        for user_id, outcome in await self._per_user(
            users, lambda user: self._fetch_holidays(workspace_id, user.id, start_iso, end_iso, signal)
        ):
            holidays[user_id] = outcome
        return holidays

    async def fetch_all_time_off(
        self,
        workspace_id: str,
        users: Sequence[User],
        start_date: str,
        end_date: str,
        *,
        signal: AbortSignal | None = None,
    ) -> dict[str, dict[str, TimeOffInfo]]:
        start_iso, end_iso = day_bounds_utc(start_date, end_date)
        body = {
            "page": 1,
            "pageSize": PAGE_SIZE,
            "users": [user.id for user in users],
            "statuses": ["APPROVED"],
            "start": start_iso,
            "end": end_iso,
        }
        data = await self._request("POST", self._workspace_url(workspace_id, "time-off/requests"), json=body, signal=signal)

        requests: list[Mapping[str, Any]] = []
        if isinstance(data, list):
            requests = data
        elif isinstance(data, Mapping):
            requests = data.get("requests") or data.get("timeOffRequests") or []

        # Every requested user gets an entry, so "no time off" is distinguishable from "no data".
        index = {user.id: {} for user in users}
        index.update(build_time_off_index(requests))
        return index

    async def _per_user(self, users: Sequence[User], fetch) -> list[tuple[str, Any]]:
        """Run ``fetch`` for each user in small concurrent batches; failed users are left out."""
        results: list[tuple[str, Any]] = []
        failed = 0
        for offset in range(0, len(users), BATCH_SIZE):
            batch = users[offset : offset + BATCH_SIZE]
            outcomes = await asyncio.gather(*(fetch(user) for user in batch), return_exceptions=True)
            for user, outcome in zip(batch, outcomes):
                if isinstance(outcome, TransportFailure):
                    failed += 1
                    self.logger.debug("Per-user fetch failed for %s: %s", user.id, outcome)
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome
                results.append((user.id, outcome))

        if failed:
            self.logger.warning("%d of %d per-user fetches failed", failed, len(users))
        return results
