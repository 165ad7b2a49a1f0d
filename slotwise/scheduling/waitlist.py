import datetime as dt
from collections.abc import Iterable

from loguru import logger

from slotwise.domain.exceptions import (
    InvalidRequestError,
    InvalidStateTransitionError,
    NotFoundError,
    NotificationDispatchError,
)
from slotwise.domain.models import (
    WaitlistEntry,
    WaitlistNotice,
    WaitlistPriority,
    WaitlistRequest,
    WaitlistStats,
    WaitlistStatus,
)
from slotwise.scheduling.ports import (
    NotificationDispatcherProtocol,
    ScheduleStoreProtocol,
    WaitlistStoreProtocol,
)
from slotwise.scheduling.time_helpers import Clock, format_clock, time_bucket, utc_now

ACTIVE_STATUSES = [WaitlistStatus.WAITING, WaitlistStatus.NOTIFIED]

DEFAULT_NOTICE = (
    "A slot has become available for your waitlisted appointment. "
    "Please book within {hours} hours or your spot will be given to the next person."
)
SLOT_NOTICE = (
    "A {time} slot on {date} has become available for your waitlisted appointment. "
    "Please book within {hours} hours or your spot will be given to the next person."
)


def rank_key(entry: WaitlistEntry) -> tuple[int, dt.datetime, str]:
    """Priority first, then strict FIFO by creation time."""
    return entry.priority.rank, entry.created_at, entry.entry_id


def matches_slot(
    entry: WaitlistEntry,
    doctor_id: str,
    department_id: str | None,
    date: dt.date,
    time: dt.time,
) -> bool:
    """Whether a waiting entry would accept the freed slot."""
    if entry.doctor_id is not None:
        if entry.doctor_id != doctor_id:
            return False
    elif entry.department_id is not None and entry.department_id != department_id:
        return False

    if date < entry.preferred_date_start:
        return False
    if entry.preferred_date_end is not None and date > entry.preferred_date_end:
        return False

    if entry.preferred_time_slots and time_bucket(time) not in entry.preferred_time_slots:
        return False
    return True


def rank_candidates(
    entries: Iterable[WaitlistEntry],
    doctor_id: str,
    department_id: str | None,
    date: dt.date,
    time: dt.time,
) -> list[WaitlistEntry]:
    """Return the waiting entries that match the slot, best candidate first."""
    matching = [
        e
        for e in entries
        if e.status is WaitlistStatus.WAITING
        and matches_slot(e, doctor_id, department_id, date, time)
    ]
    return sorted(matching, key=rank_key)


def select_candidate(
    entries: Iterable[WaitlistEntry],
    doctor_id: str,
    department_id: str | None,
    date: dt.date,
    time: dt.time,
) -> WaitlistEntry | None:
    ranked = rank_candidates(entries, doctor_id, department_id, date, time)
    return ranked[0] if ranked else None


class WaitlistEngine:
    """Owns the waitlist entry lifecycle and promotion into freed slots.

    ``waiting -> notified -> booked``, ``waiting|notified -> cancelled`` and
    ``notified -> expired``. Every transition is a compare-and-set on the
    prior status, so a lost race surfaces as ``InvalidStateTransitionError``
    and leaves the stored entry untouched.
    """

    def __init__(
        self,
        store: WaitlistStoreProtocol,
        dispatcher: NotificationDispatcherProtocol,
        *,
        schedules: ScheduleStoreProtocol | None = None,
        clock: Clock = utc_now,
        response_window_hours: int = 24,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._schedules = schedules
        self._clock = clock
        self._window = dt.timedelta(hours=response_window_hours)
        # Entry ids with a dispatch in flight.
        self._claims: set[str] = set()

    async def join(self, request: WaitlistRequest) -> WaitlistEntry:
        """Add a patient to the waitlist in the ``waiting`` state.

        Raises:
            InvalidRequestError: If the patient is missing or the date range is
                in the past or inverted.
        """
        now = self._clock()
        if not request.patient_id.strip():
            raise InvalidRequestError("patient_id is required")
        if request.preferred_date_start < now.date():
            raise InvalidRequestError("preferred_date_start cannot be in the past")
        if (
            request.preferred_date_end is not None
            and request.preferred_date_end < request.preferred_date_start
        ):
            raise InvalidRequestError("preferred_date_end cannot be before preferred_date_start")

        entry = await self._store.create(request, now)
        logger.info(
            "Waitlist entry created: id={}, priority={}",
            entry.entry_id,
            entry.priority.value,
        )
        return entry

    async def notify(self, entry_id: str, message: str | None = None) -> WaitlistEntry:
        """Staff-triggered ``waiting -> notified``.

        Raises:
            NotFoundError: If the entry does not exist.
            InvalidStateTransitionError: If the entry is not waiting.
            NotificationDispatchError: If the notice could not be delivered.
                The entry stays ``waiting``.
        """
        entry = await self._require(entry_id)
        if entry.status is not WaitlistStatus.WAITING or entry_id in self._claims:
            raise InvalidStateTransitionError(
                "waitlist entry", entry_id, entry.status.value, WaitlistStatus.NOTIFIED.value
            )

        self._claims.add(entry_id)
        try:
            return await self._deliver(entry, message or self._default_message())
        finally:
            self._claims.discard(entry_id)

    async def mark_booked(self, entry_id: str) -> WaitlistEntry:
        """``notified -> booked`` once the patient has taken the slot.

        An entry whose response window already elapsed is expired instead.
        """
        entry = await self._require(entry_id)
        if entry.status is not WaitlistStatus.NOTIFIED:
            raise InvalidStateTransitionError(
                "waitlist entry", entry_id, entry.status.value, WaitlistStatus.BOOKED.value
            )

        now = self._clock()
        if self._is_overdue(entry, now):
            await self._store.transition(
                entry_id,
                WaitlistStatus.NOTIFIED,
                WaitlistStatus.EXPIRED,
                {"updated_at": now},
            )
            logger.info("Waitlist entry {} expired before it was booked", entry_id)
            raise InvalidStateTransitionError(
                "waitlist entry", entry_id, WaitlistStatus.EXPIRED.value, WaitlistStatus.BOOKED.value
            )

        updated = await self._store.transition(
            entry_id,
            WaitlistStatus.NOTIFIED,
            WaitlistStatus.BOOKED,
            {"responded_at": now, "updated_at": now},
        )
        if updated is None:
            raise await self._lost_race(entry_id, WaitlistStatus.BOOKED)

        logger.info("Waitlist entry booked: id={}", entry_id)
        return updated

    async def cancel(self, entry_id: str) -> WaitlistEntry:
        """Withdraw a waiting or notified entry."""
        entry = await self._require(entry_id)
        if not entry.status.is_active:
            raise InvalidStateTransitionError(
                "waitlist entry", entry_id, entry.status.value, WaitlistStatus.CANCELLED.value
            )

        updated = await self._store.transition(
            entry_id,
            entry.status,
            WaitlistStatus.CANCELLED,
            {"updated_at": self._clock()},
        )
        if updated is None:
            raise await self._lost_race(entry_id, WaitlistStatus.CANCELLED)

        logger.info("Waitlist entry cancelled: id={}", entry_id)
        return updated

    async def on_slot_freed(
        self, doctor_id: str, date: dt.date, time: dt.time
    ) -> WaitlistEntry | None:
        """Promote the best matching waiting entry into a freed slot.

        At most one entry is notified. Candidates already claimed by another
        promotion, whose compare-and-set loses, or whose dispatch fails are
        skipped in favour of the next-best one.
        """
        now = self._clock()
        if dt.datetime.combine(date, time, tzinfo=now.tzinfo) <= now:
            logger.debug("Freed slot {} {} is in the past; not promoting", date, time)
            return None

        department_id = await self._department_of(doctor_id)
        waiting = await self._store.list_by_status([WaitlistStatus.WAITING])
        ranked = rank_candidates(waiting, doctor_id, department_id, date, time)
        message = SLOT_NOTICE.format(
            time=format_clock(time),
            date=date.isoformat(),
            hours=self._window_hours(),
        )

        for entry in ranked:
            if entry.entry_id in self._claims:
                continue
            self._claims.add(entry.entry_id)
            try:
                latest = await self._store.get(entry.entry_id)
                if latest is None or latest.status is not WaitlistStatus.WAITING:
                    logger.debug(
                        "Waitlist entry {} is no longer waiting; trying next candidate",
                        entry.entry_id,
                    )
                    continue
                promoted = await self._deliver(latest, message)
            except NotificationDispatchError as exc:
                logger.warning("Skipping waitlist entry {}: {}", entry.entry_id, exc)
                continue
            except InvalidStateTransitionError:
                logger.warning(
                    "Waitlist entry {} changed state during promotion; trying next candidate",
                    entry.entry_id,
                )
                continue
            finally:
                self._claims.discard(entry.entry_id)

            logger.info(
                "Promoted waitlist entry {} into slot doctor={}, date={}, time={}",
                promoted.entry_id,
                doctor_id,
                date,
                format_clock(time),
            )
            return promoted

        logger.info(
            "No waitlist match for freed slot doctor={}, date={}, time={}",
            doctor_id,
            date,
            format_clock(time),
        )
        return None

    async def expire_overdue(self) -> list[WaitlistEntry]:
        """Expire every notified entry whose response window has elapsed.

        Idempotent: entries that are already terminal are left alone.
        """
        now = self._clock()
        notified = await self._store.list_by_status([WaitlistStatus.NOTIFIED])

        expired: list[WaitlistEntry] = []
        for entry in notified:
            if not self._is_overdue(entry, now):
                continue
            updated = await self._store.transition(
                entry.entry_id,
                WaitlistStatus.NOTIFIED,
                WaitlistStatus.EXPIRED,
                {"updated_at": now},
            )
            if updated is None:
                logger.debug("Waitlist entry {} left notified before expiry", entry.entry_id)
                continue
            expired.append(updated)

        if expired:
            logger.info("Expired {} waitlist entr(y/ies)", len(expired))
        return expired

    async def list_entries(
        self,
        status_filter: str = "active",
        priority: WaitlistPriority | None = None,
    ) -> list[WaitlistEntry]:
        """List entries ranked by priority, then creation time.

        ``status_filter`` is ``"active"``, ``"all"`` or a single status value.
        """
        if status_filter == "active":
            statuses: list[WaitlistStatus] | None = ACTIVE_STATUSES
        elif status_filter == "all":
            statuses = None
        else:
            try:
                statuses = [WaitlistStatus(status_filter)]
            except ValueError as exc:
                raise InvalidRequestError(f"unknown status filter '{status_filter}'") from exc

        entries = await self._store.list_by_status(statuses)
        if priority is not None:
            entries = [e for e in entries if e.priority is priority]
        return sorted(entries, key=rank_key)

    async def stats(self) -> WaitlistStats:
        entries = await self._store.list_by_status(None)
        waiting = sum(1 for e in entries if e.status is WaitlistStatus.WAITING)
        notified = sum(1 for e in entries if e.status is WaitlistStatus.NOTIFIED)
        return WaitlistStats(
            total=waiting + notified,
            waiting=waiting,
            notified=notified,
            urgent=sum(
                1
                for e in entries
                if e.priority is WaitlistPriority.URGENT and e.status is WaitlistStatus.WAITING
            ),
            booked=sum(1 for e in entries if e.status is WaitlistStatus.BOOKED),
        )

    async def _deliver(self, entry: WaitlistEntry, message: str) -> WaitlistEntry:
        notice = WaitlistNotice(
            waitlist_entry_id=entry.entry_id,
            patient_id=entry.patient_id,
            message=message,
        )
        try:
            receipt = await self._dispatcher.dispatch(notice)
        except NotificationDispatchError:
            raise
        except Exception as exc:
            raise NotificationDispatchError(reason=str(exc), entry_id=entry.entry_id) from exc

        if not receipt.acknowledged:
            raise NotificationDispatchError(
                reason="delivery not acknowledged", entry_id=entry.entry_id
            )

        updated = await self._store.transition(
            entry.entry_id,
            WaitlistStatus.WAITING,
            WaitlistStatus.NOTIFIED,
            {
                "notified_at": receipt.delivered_at,
                "response_deadline": receipt.delivered_at + self._window,
                "updated_at": self._clock(),
            },
        )
        if updated is None:
            raise await self._lost_race(entry.entry_id, WaitlistStatus.NOTIFIED)

        logger.info("Waitlist entry notified: id={}", entry.entry_id)
        return updated

    async def _require(self, entry_id: str) -> WaitlistEntry:
        entry = await self._store.get(entry_id)
        if entry is None:
            raise NotFoundError("waitlist entry", entry_id)
        return entry

    async def _lost_race(
        self, entry_id: str, target: WaitlistStatus
    ) -> InvalidStateTransitionError:
        latest = await self._store.get(entry_id)
        current = latest.status.value if latest else "missing"
        return InvalidStateTransitionError("waitlist entry", entry_id, current, target.value)

    async def _department_of(self, doctor_id: str) -> str | None:
        if self._schedules is None:
            return None
        return await self._schedules.get_department(doctor_id)

    def _is_overdue(self, entry: WaitlistEntry, now: dt.datetime) -> bool:
        deadline = entry.response_deadline
        if deadline is None and entry.notified_at is not None:
            deadline = entry.notified_at + self._window
        return deadline is not None and deadline <= now

    def _window_hours(self) -> int:
        return int(self._window.total_seconds() // 3600)

    def _default_message(self) -> str:
        return DEFAULT_NOTICE.format(hours=self._window_hours())
