import datetime as dt
from typing import Any

import httpx
from loguru import logger

from slotwise.domain.exceptions import (
    NotificationDispatchError,
    SlotConflictError,
    StoreUnavailableError,
)
from slotwise.domain.models import (
    Appointment,
    AppointmentStatus,
    BookingRequest,
    DispatchReceipt,
    ScheduleOverride,
    WaitlistEntry,
    WaitlistNotice,
    WaitlistRequest,
    WaitlistStatus,
    WeeklyScheduleEntry,
)
from slotwise.scheduling.adapters.records import (
    appointment_from_row,
    appointment_to_row,
    override_from_row,
    parse_timestamp,
    schedule_from_row,
    waitlist_changes_to_row,
    waitlist_from_row,
    waitlist_to_row,
)
from slotwise.scheduling.time_helpers import Clock, utc_now

_UNIQUE_VIOLATION = "23505"
_RETURN_ROWS = "return=representation"

Row = dict[str, Any]


class PostgRESTError(StoreUnavailableError):
    """A request to the PostgREST endpoint failed."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None) -> None:
        self.status_code = status_code
        self.code = code
        super().__init__(message)

    @property
    def is_unique_violation(self) -> bool:
        return self.code == _UNIQUE_VIOLATION or self.status_code == 409


def _eq(value: object) -> str:
    return f"eq.{value}"


class PostgRESTClient:
    """Table-level access to a PostgREST (Supabase REST) endpoint."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        timeout: float = 30.0,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
        )

    async def request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> list[Row]:
        """Execute a request against ``table`` and return the decoded rows."""
        headers = {"Prefer": prefer} if prefer else None
        try:
            resp = await self._client.request(
                method, f"/{table}", params=params, json=json, headers=headers
            )
        except httpx.HTTPError as exc:
            raise PostgRESTError(f"{method} {table} failed: {exc}") from exc

        if resp.is_error:
            code: str | None = None
            detail = resp.text
            try:
                body: Row = resp.json()
                code = body.get("code")
                detail = body.get("message") or detail
            except ValueError:
                pass
            raise PostgRESTError(
                f"{method} {table} failed with status {resp.status_code}: {detail}",
                status_code=resp.status_code,
                code=code,
            )

        if not resp.content:
            return []
        data = resp.json()
        return data if isinstance(data, list) else [data]

    async def health_check(self) -> bool:
        try:
            await self.request("GET", "appointments", params={"select": "id", "limit": "1"})
            return True
        except StoreUnavailableError as exc:
            logger.warning("PostgREST health check failed: {}", exc)
            return False

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("PostgREST client closed")


class PostgRESTScheduleStore:
    def __init__(self, client: PostgRESTClient) -> None:
        self._client = client

    async def get_weekly_entry(self, doctor_id: str, day_of_week: int) -> WeeklyScheduleEntry | None:
        rows = await self._client.request(
            "GET",
            "staff_schedules",
            params={
                "staff_id": _eq(doctor_id),
                "staff_type": _eq("doctor"),
                "day_of_week": _eq(day_of_week),
                "limit": "1",
            },
        )
        return schedule_from_row(rows[0]) if rows else None

    async def get_override(self, doctor_id: str, date: dt.date) -> ScheduleOverride | None:
        rows = await self._client.request(
            "GET",
            "schedule_overrides",
            params={
                "staff_id": _eq(doctor_id),
                "override_date": _eq(date.isoformat()),
                "limit": "1",
            },
        )
        return override_from_row(rows[0]) if rows else None

    async def get_department(self, doctor_id: str) -> str | None:
        rows = await self._client.request(
            "GET",
            "doctors",
            params={"id": _eq(doctor_id), "select": "department_id", "limit": "1"},
        )
        if not rows:
            return None
        department_id = rows[0].get("department_id")
        return str(department_id) if department_id is not None else None


class PostgRESTBookingStore:
    """Appointments table.

    Relies on a partial unique index on
    ``(doctor_id, appointment_date, appointment_time) WHERE status <> 'cancelled'``;
    the database rejects the second of two racing inserts.
    """

    def __init__(self, client: PostgRESTClient) -> None:
        self._client = client

    async def list_active(self, doctor_id: str, date: dt.date) -> list[Appointment]:
        rows = await self._client.request(
            "GET",
            "appointments",
            params={
                "doctor_id": _eq(doctor_id),
                "appointment_date": _eq(date.isoformat()),
                "status": "neq.cancelled",
                "order": "appointment_time.asc",
            },
        )
        return [appointment_from_row(r) for r in rows]

    async def insert_if_absent(self, request: BookingRequest, duration_minutes: int) -> Appointment:
        try:
            rows = await self._client.request(
                "POST",
                "appointments",
                json=appointment_to_row(request, duration_minutes),
                prefer=_RETURN_ROWS,
            )
        except PostgRESTError as exc:
            if exc.is_unique_violation:
                raise SlotConflictError(request.doctor_id, request.date, request.time) from exc
            raise

        if not rows:
            raise StoreUnavailableError("Appointment insert returned no row")
        return appointment_from_row(rows[0])

    async def get(self, appointment_id: str) -> Appointment | None:
        rows = await self._client.request(
            "GET", "appointments", params={"id": _eq(appointment_id), "limit": "1"}
        )
        return appointment_from_row(rows[0]) if rows else None

    async def update_status(
        self,
        appointment_id: str,
        expected: AppointmentStatus,
        target: AppointmentStatus,
    ) -> Appointment | None:
        rows = await self._client.request(
            "PATCH",
            "appointments",
            params={"id": _eq(appointment_id), "status": _eq(expected.value)},
            json={"status": target.value},
            prefer=_RETURN_ROWS,
        )
        return appointment_from_row(rows[0]) if rows else None


class PostgRESTWaitlistStore:
    def __init__(self, client: PostgRESTClient) -> None:
        self._client = client

    async def create(self, request: WaitlistRequest, created_at: dt.datetime) -> WaitlistEntry:
        rows = await self._client.request(
            "POST",
            "appointment_waitlist",
            json=waitlist_to_row(request, created_at),
            prefer=_RETURN_ROWS,
        )
        if not rows:
            raise StoreUnavailableError("Waitlist insert returned no row")
        return waitlist_from_row(rows[0])

    async def get(self, entry_id: str) -> WaitlistEntry | None:
        rows = await self._client.request(
            "GET", "appointment_waitlist", params={"id": _eq(entry_id), "limit": "1"}
        )
        return waitlist_from_row(rows[0]) if rows else None

    async def list_by_status(self, statuses: list[WaitlistStatus] | None = None) -> list[WaitlistEntry]:
        params = {"order": "created_at.asc"}
        if statuses is not None:
            params["status"] = f"in.({','.join(s.value for s in statuses)})"
        rows = await self._client.request("GET", "appointment_waitlist", params=params)
        return [waitlist_from_row(r) for r in rows]

    async def transition(
        self,
        entry_id: str,
        expected: WaitlistStatus,
        target: WaitlistStatus,
        changes: dict[str, Any] | None = None,
    ) -> WaitlistEntry | None:
        body = waitlist_changes_to_row(changes or {})
        body["status"] = target.value
        rows = await self._client.request(
            "PATCH",
            "appointment_waitlist",
            params={"id": _eq(entry_id), "status": _eq(expected.value)},
            json=body,
            prefer=_RETURN_ROWS,
        )
        return waitlist_from_row(rows[0]) if rows else None


class PostgRESTNotifier:
    """Delivers waitlist notices as rows in the in-app ``notifications`` table."""

    def __init__(self, client: PostgRESTClient, clock: Clock = utc_now) -> None:
        self._client = client
        self._clock = clock

    async def dispatch(self, notice: WaitlistNotice) -> DispatchReceipt:
        try:
            patients = await self._client.request(
                "GET",
                "patients",
                params={"id": _eq(notice.patient_id), "select": "user_id", "limit": "1"},
            )
            user_id = patients[0].get("user_id") if patients else None
            if not user_id:
                raise NotificationDispatchError(
                    reason=f"patient {notice.patient_id} has no linked user account",
                    entry_id=notice.waitlist_entry_id,
                )

            rows = await self._client.request(
                "POST",
                "notifications",
                json={
                    "user_id": user_id,
                    "title": "Appointment Slot Available!",
                    "message": notice.message,
                    "type": "waitlist_notification",
                    "priority": "high",
                    "action_url": "/dashboard",
                    "metadata": {"waitlist_id": notice.waitlist_entry_id},
                },
                prefer=_RETURN_ROWS,
            )
        except PostgRESTError as exc:
            raise NotificationDispatchError(
                reason=str(exc), entry_id=notice.waitlist_entry_id
            ) from exc

        delivered_at = parse_timestamp(rows[0].get("created_at")) if rows else None
        return DispatchReceipt(acknowledged=True, delivered_at=delivered_at or self._clock())
