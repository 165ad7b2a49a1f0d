import datetime as dt
import json
from typing import Any

import httpx
import pytest
from pytest_httpx import HTTPXMock

from slotwise.domain.exceptions import (
    NotificationDispatchError,
    SlotConflictError,
    StoreUnavailableError,
)
from slotwise.domain.models import (
    AppointmentStatus,
    BookingRequest,
    TimeBucket,
    WaitlistNotice,
    WaitlistPriority,
    WaitlistRequest,
    WaitlistStatus,
)
from slotwise.scheduling.adapters.postgrest import (
    PostgRESTBookingStore,
    PostgRESTClient,
    PostgRESTError,
    PostgRESTNotifier,
    PostgRESTScheduleStore,
    PostgRESTWaitlistStore,
)

BASE_URL = "https://clinic.supabase.test/rest/v1"
API_KEY = "service-role-key"
UTC = dt.timezone.utc


@pytest.fixture
def client() -> PostgRESTClient:
    return PostgRESTClient(BASE_URL, api_key=API_KEY)


def _appointment_row(**overrides: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "id": "a1b2",
        "doctor_id": "doc-1",
        "patient_id": "p-1",
        "department_id": "cardiology",
        "appointment_date": "2026-03-02",
        "appointment_time": "10:00:00",
        "duration": 30,
        "type": "consultation",
        "status": "scheduled",
        "is_emergency": False,
        "notes": None,
        "created_at": "2026-03-01T08:00:00+00:00",
    }
    row.update(overrides)
    return row


def _waitlist_row(**overrides: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "id": "w-1",
        "patient_id": "p-1",
        "doctor_id": "doc-1",
        "department_id": None,
        "preferred_date_start": "2026-03-02",
        "preferred_date_end": None,
        "preferred_time_slots": ["morning"],
        "priority": "urgent",
        "status": "waiting",
        "created_at": "2026-03-01T08:00:00Z",
    }
    row.update(overrides)
    return row


def _body(request: httpx.Request) -> Any:
    return json.loads(request.content)


class TestClient:
    @pytest.mark.asyncio
    async def test_sends_api_key_headers(self, client: PostgRESTClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(json=[])

        await client.request("GET", "appointments")

        request = httpx_mock.get_requests()[0]
        assert request.url.path == "/rest/v1/appointments"
        assert request.headers["apikey"] == API_KEY
        assert request.headers["Authorization"] == f"Bearer {API_KEY}"

    @pytest.mark.asyncio
    async def test_empty_body_returns_no_rows(
        self, client: PostgRESTClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(status_code=204)

        assert await client.request("PATCH", "appointments") == []

    @pytest.mark.asyncio
    async def test_single_object_is_wrapped(
        self, client: PostgRESTClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(json={"id": "x"})

        assert await client.request("GET", "appointments") == [{"id": "x"}]

    @pytest.mark.asyncio
    async def test_error_body_is_parsed(self, client: PostgRESTClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            status_code=400, json={"code": "22P02", "message": "invalid input syntax"}
        )

        with pytest.raises(PostgRESTError, match="invalid input syntax") as exc_info:
            await client.request("GET", "appointments")

        assert exc_info.value.status_code == 400
        assert exc_info.value.code == "22P02"
        assert exc_info.value.is_unique_violation is False

    @pytest.mark.asyncio
    async def test_transport_error_is_store_unavailable(
        self, client: PostgRESTClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))

        with pytest.raises(StoreUnavailableError, match="connection refused"):
            await client.request("GET", "appointments")

    @pytest.mark.asyncio
    async def test_health_check(self, client: PostgRESTClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(json=[])
        httpx_mock.add_response(status_code=503, text="upstream down")

        assert await client.health_check() is True
        assert await client.health_check() is False


class TestScheduleStore:
    @pytest.mark.asyncio
    async def test_weekly_entry_with_break(
        self, client: PostgRESTClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            json=[
                {
                    "staff_id": "doc-1",
                    "day_of_week": 1,
                    "start_time": "09:00:00",
                    "end_time": "17:00:00",
                    "is_available": True,
                    "break_start": "12:00:00",
                    "break_end": "13:00:00",
                }
            ]
        )

        entry = await PostgRESTScheduleStore(client).get_weekly_entry("doc-1", 1)

        assert entry is not None
        assert entry.start_time == dt.time(9, 0)
        assert entry.breaks[0].start == dt.time(12, 0)
        params = httpx_mock.get_requests()[0].url.params
        assert params["staff_id"] == "eq.doc-1"
        assert params["staff_type"] == "eq.doctor"
        assert params["day_of_week"] == "eq.1"

    @pytest.mark.asyncio
    async def test_missing_weekly_entry(self, client: PostgRESTClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(json=[])

        assert await PostgRESTScheduleStore(client).get_weekly_entry("doc-1", 0) is None

    @pytest.mark.asyncio
    async def test_override(self, client: PostgRESTClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            json=[{"staff_id": "doc-1", "override_date": "2026-03-02", "is_available": False}]
        )

        override = await PostgRESTScheduleStore(client).get_override("doc-1", dt.date(2026, 3, 2))

        assert override is not None
        assert override.is_available is False
        assert httpx_mock.get_requests()[0].url.params["override_date"] == "eq.2026-03-02"

    @pytest.mark.asyncio
    async def test_department_is_stringified(
        self, client: PostgRESTClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(json=[{"department_id": 7}])

        assert await PostgRESTScheduleStore(client).get_department("doc-1") == "7"


class TestBookingStore:
    @pytest.mark.asyncio
    async def test_list_active_filters_cancelled(
        self, client: PostgRESTClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(json=[_appointment_row()])

        rows = await PostgRESTBookingStore(client).list_active("doc-1", dt.date(2026, 3, 2))

        assert rows[0].time == dt.time(10, 0)
        params = httpx_mock.get_requests()[0].url.params
        assert params["status"] == "neq.cancelled"
        assert params["appointment_date"] == "eq.2026-03-02"

    @pytest.mark.asyncio
    async def test_insert_returns_created_row(
        self, client: PostgRESTClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(status_code=201, json=[_appointment_row()])
        request = BookingRequest(
            doctor_id="doc-1", patient_id="p-1", date=dt.date(2026, 3, 2), time=dt.time(10, 0)
        )

        appt = await PostgRESTBookingStore(client).insert_if_absent(request, 30)

        assert appt.appointment_id == "a1b2"
        assert appt.status is AppointmentStatus.SCHEDULED
        sent = httpx_mock.get_requests()[0]
        assert sent.method == "POST"
        assert sent.headers["Prefer"] == "return=representation"
        assert _body(sent)["appointment_time"] == "10:00"
        assert _body(sent)["status"] == "scheduled"

    @pytest.mark.parametrize(
        ("status_code", "payload"),
        [
            (409, {"code": "23505", "message": "duplicate key value"}),
            (400, {"code": "23505", "message": "duplicate key value"}),
            (409, {"message": "conflict"}),
        ],
        ids=["409-with-code", "code-only", "409-only"],
    )
    @pytest.mark.asyncio
    async def test_unique_violation_is_slot_conflict(
        self,
        client: PostgRESTClient,
        httpx_mock: HTTPXMock,
        status_code: int,
        payload: dict[str, str],
    ) -> None:
        httpx_mock.add_response(status_code=status_code, json=payload)
        request = BookingRequest(
            doctor_id="doc-1", patient_id="p-1", date=dt.date(2026, 3, 2), time=dt.time(10, 0)
        )

        with pytest.raises(SlotConflictError):
            await PostgRESTBookingStore(client).insert_if_absent(request, 30)

    @pytest.mark.asyncio
    async def test_server_error_is_not_a_conflict(
        self, client: PostgRESTClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(status_code=500, json={"message": "boom"})
        request = BookingRequest(
            doctor_id="doc-1", patient_id="p-1", date=dt.date(2026, 3, 2), time=dt.time(10, 0)
        )

        with pytest.raises(StoreUnavailableError) as exc_info:
            await PostgRESTBookingStore(client).insert_if_absent(request, 30)

        assert not isinstance(exc_info.value, SlotConflictError)

    @pytest.mark.asyncio
    async def test_update_status_is_compare_and_set(
        self, client: PostgRESTClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(json=[_appointment_row(status="cancelled")])

        updated = await PostgRESTBookingStore(client).update_status(
            "a1b2", AppointmentStatus.SCHEDULED, AppointmentStatus.CANCELLED
        )

        assert updated is not None
        assert updated.status is AppointmentStatus.CANCELLED
        sent = httpx_mock.get_requests()[0]
        assert sent.method == "PATCH"
        assert sent.url.params["id"] == "eq.a1b2"
        assert sent.url.params["status"] == "eq.scheduled"
        assert _body(sent) == {"status": "cancelled"}

    @pytest.mark.asyncio
    async def test_update_status_lost_race(
        self, client: PostgRESTClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(json=[])

        updated = await PostgRESTBookingStore(client).update_status(
            "a1b2", AppointmentStatus.SCHEDULED, AppointmentStatus.CANCELLED
        )

        assert updated is None


class TestWaitlistStore:
    @pytest.mark.asyncio
    async def test_create(self, client: PostgRESTClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(status_code=201, json=[_waitlist_row()])
        request = WaitlistRequest(
            patient_id="p-1",
            preferred_date_start=dt.date(2026, 3, 2),
            doctor_id="doc-1",
            preferred_time_slots=frozenset({TimeBucket.MORNING}),
            priority=WaitlistPriority.URGENT,
        )

        entry = await PostgRESTWaitlistStore(client).create(
            request, dt.datetime(2026, 3, 1, 8, 0, tzinfo=UTC)
        )

        assert entry.entry_id == "w-1"
        assert entry.created_at == dt.datetime(2026, 3, 1, 8, 0, tzinfo=UTC)
        body = _body(httpx_mock.get_requests()[0])
        assert body["preferred_time_slots"] == ["morning"]
        assert body["status"] == "waiting"

    @pytest.mark.asyncio
    async def test_list_by_status(self, client: PostgRESTClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(json=[_waitlist_row(), _waitlist_row(id="w-2", status="notified")])

        entries = await PostgRESTWaitlistStore(client).list_by_status(
            [WaitlistStatus.WAITING, WaitlistStatus.NOTIFIED]
        )

        assert [e.entry_id for e in entries] == ["w-1", "w-2"]
        params = httpx_mock.get_requests()[0].url.params
        assert params["status"] == "in.(waiting,notified)"
        assert params["order"] == "created_at.asc"

    @pytest.mark.asyncio
    async def test_list_all_has_no_status_filter(
        self, client: PostgRESTClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(json=[])

        await PostgRESTWaitlistStore(client).list_by_status(None)

        assert "status" not in httpx_mock.get_requests()[0].url.params

    @pytest.mark.asyncio
    async def test_transition_serialises_timestamps(
        self, client: PostgRESTClient, httpx_mock: HTTPXMock
    ) -> None:
        notified_at = dt.datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
        httpx_mock.add_response(
            json=[_waitlist_row(status="notified", notified_at="2026-03-01T09:00:00+00:00")]
        )

        entry = await PostgRESTWaitlistStore(client).transition(
            "w-1",
            WaitlistStatus.WAITING,
            WaitlistStatus.NOTIFIED,
            {"notified_at": notified_at},
        )

        assert entry is not None
        assert entry.notified_at == notified_at
        sent = httpx_mock.get_requests()[0]
        assert sent.url.params["status"] == "eq.waiting"
        assert _body(sent) == {"notified_at": "2026-03-01T09:00:00+00:00", "status": "notified"}


class TestNotifier:
    _notice = WaitlistNotice(waitlist_entry_id="w-1", patient_id="p-1", message="A slot opened")

    @pytest.mark.asyncio
    async def test_writes_in_app_notification(
        self, client: PostgRESTClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(json=[{"user_id": "u-1"}])
        httpx_mock.add_response(
            status_code=201, json=[{"id": "n-1", "created_at": "2026-03-01T09:00:00+00:00"}]
        )

        receipt = await PostgRESTNotifier(client).dispatch(self._notice)

        assert receipt.acknowledged is True
        assert receipt.delivered_at == dt.datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
        lookup, insert = httpx_mock.get_requests()
        assert lookup.url.params["id"] == "eq.p-1"
        body = _body(insert)
        assert body["user_id"] == "u-1"
        assert body["type"] == "waitlist_notification"
        assert body["metadata"] == {"waitlist_id": "w-1"}

    @pytest.mark.asyncio
    async def test_falls_back_to_clock(self, client: PostgRESTClient, httpx_mock: HTTPXMock) -> None:
        fixed = dt.datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        httpx_mock.add_response(json=[{"user_id": "u-1"}])
        httpx_mock.add_response(status_code=201, json=[{"id": "n-1"}])

        receipt = await PostgRESTNotifier(client, clock=lambda: fixed).dispatch(self._notice)

        assert receipt.delivered_at == fixed

    @pytest.mark.asyncio
    async def test_patient_without_account(
        self, client: PostgRESTClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(json=[{"user_id": None}])

        with pytest.raises(NotificationDispatchError, match="no linked user"):
            await PostgRESTNotifier(client).dispatch(self._notice)
        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_backend_failure_is_dispatch_error(
        self, client: PostgRESTClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(json=[{"user_id": "u-1"}])
        httpx_mock.add_response(status_code=500, json={"message": "insert failed"})

        with pytest.raises(NotificationDispatchError, match="insert failed") as exc_info:
            await PostgRESTNotifier(client).dispatch(self._notice)

        assert exc_info.value.entry_id == "w-1"
