"""Keeps the in-memory ledger and the user's spreadsheet consistent.

The coordinator owns the local collections (settings, reservations,
expenses, paid months), the auth session and the remote store. Every local
mutation schedules a debounced full-replacement write of the affected
collection. Loads raise a read-lock so that data arriving from the
spreadsheet is never echoed straight back to it.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal

import pydantic

from .aggregator import (
    MonthAggregator,
    all_months,
    build_expense,
    build_reservation,
    format_reservations_for_filing,
    group_by_month,
    most_recent_unpaid_month,
    occupancy_rate,
)
from .clients.google_identity import IdentityProvider
from .clients.sheets import RemoteTabularStore, extract_spreadsheet_id
from .dates import parse_month_key, to_local_date
from .exceptions import (
    AuthError,
    AuthExpiredError,
    ConfigurationError,
    RentalTaxError,
    ValidationError,
)
from .models import (
    AppSettings,
    Collection,
    Expense,
    ExpenseCategory,
    MonthlyTaxSummary,
    Reservation,
    SyncPhase,
    SyncState,
    YearOverYearPoint,
)
from .paid import PaidMonthTracker
from .repository import SheetRepository, SheetSchema
from .scheduler import Debouncer, Scheduler
from .session import AuthSession, RestoreResult
from .taxes import TaxCalculator

logger = logging.getLogger(__name__)

StoreFactory = Callable[[str, str], RemoteTabularStore]

DEFAULT_AUTOSAVE_DELAY = 1.0  # seconds

UNSET = object()  # argument not given


class SyncCoordinator:
    """
    State machine driving sign-in, loading and debounced saving.

    Phases go Unauthenticated -> Authenticating -> Loading -> Ready. Token
    expiry, whether detected locally or reported by the store, drops back to
    Unauthenticated with ``state.session_expired`` set. Nothing is retried
    automatically and local state is never rolled back after a failed write.

    Writes replace whole sheets. Two devices editing the same spreadsheet
    will overwrite each other's changes (last writer wins).
    """

    def __init__(
        self,
        identity: IdentityProvider,
        store_factory: StoreFactory,
        session: AuthSession,
        scheduler: Scheduler | None = None,
        calculator: TaxCalculator | None = None,
        autosave_delay: float = DEFAULT_AUTOSAVE_DELAY,
        on_session_expired: Callable[[], None] | None = None,
        schema: SheetSchema | None = None,
    ):
        """
        Args:
            identity: Issues access tokens
            store_factory: Builds a remote store from (token, spreadsheet_id)
            session: Auth session backed by the host key/value store
            scheduler: Debounced task runner (defaults to an asyncio Debouncer)
            calculator: Tax calculator (defaults to the Brazilian one)
            autosave_delay: Quiet period before a write fires, in seconds
            on_session_expired: Called once each time the session expires
            schema: Sheet titles
        """
        self.identity = identity
        self.store_factory = store_factory
        self.session = session
        self.scheduler = scheduler or Debouncer()
        self.aggregator = MonthAggregator(calculator)
        self.autosave_delay = autosave_delay
        self.on_session_expired = on_session_expired
        self.schema = schema or SheetSchema()

        self.state = SyncState()
        self.settings = AppSettings()
        self.reservations: list[Reservation] = []
        self.expenses: list[Expense] = []
        self.paid = PaidMonthTracker()

        self._store: RemoteTabularStore | None = None
        self._repository: SheetRepository | None = None
        self._retired_stores: list[RemoteTabularStore] = []

    # ========================================================================
    # Session lifecycle
    # ========================================================================

    async def restore(self) -> RestoreResult:
        """
        Resume a persisted session.

        A live session with a connected spreadsheet loads right away. An
        expired one raises the session-expired notice.
        """
        result = self.session.restore()
        if result is RestoreResult.EXPIRED:
            self._expire("Saved session has expired")
        elif result is RestoreResult.ACTIVE:
            self.state.token_expires_at = self.session.expires_at
            if self.session.spreadsheet_id:
                await self.load()
            else:
                self.state.phase = SyncPhase.AUTHENTICATING
        return result

    async def sign_in(self) -> None:
        """
        Sign in with the identity provider and load the spreadsheet if known.

        Without a connected spreadsheet the coordinator stays in
        Authenticating until :meth:`connect_spreadsheet` is called. A failed
        sign-in only sets ``state.last_error``; the phase and any session
        already in place are left as they were.

        Raises:
            AuthError: If sign-in fails or is cancelled
            ConfigurationError: If the identity provider is not configured
        """
        previous_phase = self.state.phase
        was_expired = self.state.session_expired
        if previous_phase is SyncPhase.READY:
            # Pending edits belong to the current session
            await self.scheduler.flush()
        self.state.phase = SyncPhase.AUTHENTICATING
        self.state.last_error = None

        try:
            grant = await self.identity.sign_in()
            user = await self.identity.get_user_info(grant.token)
        except RentalTaxError as e:
            logger.error(f"Sign-in failed: {e}")
            self.state.phase = previous_phase
            self.state.session_expired = was_expired
            self.state.last_error = str(e)
            raise

        self.state.session_expired = False
        self._retire_store()
        self.session.start(grant, user)
        self.state.token_expires_at = self.session.expires_at

        if self.session.spreadsheet_id:
            await self.load()

    async def connect_spreadsheet(self, id_or_url: str) -> str:
        """
        Connect a spreadsheet, create any missing sheets and load it.

        Pending writes are saved to the previously connected spreadsheet
        first. The local collections are then dropped and nothing is written
        until the new spreadsheet has been loaded. If its sheets cannot be
        created the coordinator waits in Authenticating for another connect.

        Returns:
            The spreadsheet id

        Raises:
            ValidationError: If no spreadsheet id can be found in the input
            AuthError: If not signed in or the session expired
        """
        spreadsheet_id = extract_spreadsheet_id(id_or_url)
        if not spreadsheet_id:
            raise ValidationError(f"Not a spreadsheet URL or id: {id_or_url!r}")
        if self.session.token is None:
            raise AuthError("Sign in before connecting a spreadsheet")

        await self.scheduler.flush()
        if self.session.token is None:
            raise AuthExpiredError("Session expired while saving pending changes")

        self.state.phase = SyncPhase.LOADING
        self.state.read_lock = True
        self._retire_store()
        self._reset_collections()
        self.session.spreadsheet_id = spreadsheet_id
        logger.info(f"Connected spreadsheet {spreadsheet_id}")

        try:
            repository = self._repository_for_io()
            await repository.initialize()
        except AuthExpiredError as e:
            self._expire(str(e))
            raise
        except RentalTaxError as e:
            logger.error(f"Failed to prepare spreadsheet {spreadsheet_id}: {e}")
            self.state.phase = SyncPhase.AUTHENTICATING
            self.state.last_error = str(e)
            raise
        finally:
            self.state.read_lock = False

        await self.load()
        return spreadsheet_id

    def dismiss_session_expired(self) -> None:
        self.state.session_expired = False

    def sign_out(self) -> None:
        """Forget the session and the local data. Pending writes are dropped."""
        self.scheduler.cancel_all()
        self.state.pending_writes.clear()
        self.session.clear()
        self._retire_store()
        self._reset_collections()
        self.state.phase = SyncPhase.UNAUTHENTICATED
        self.state.token_expires_at = None
        self.state.last_error = None
        logger.info("Signed out")

    async def flush(self) -> None:
        """Run pending writes now and wait for writes already in flight."""
        await self.scheduler.flush()

    async def close(self) -> None:
        """
        Cancel pending writes and close the remote store.

        Call :meth:`flush` first to keep pending changes.
        """
        self.scheduler.cancel_all()
        self.state.pending_writes.clear()
        self._retire_store()
        stores, self._retired_stores = self._retired_stores, []
        for store in stores:
            await store.aclose()

    # ========================================================================
    # Loading
    # ========================================================================

    async def load(self) -> None:
        """
        Read every collection from the spreadsheet.

        Collections are replaced one at a time as each read succeeds, so a
        failure part-way leaves the earlier ones loaded. The read-lock is
        held for the whole load and always released.

        Raises:
            AuthExpiredError: If the session expired (the session is cleared)
            AuthError: If not signed in (phase moves to Unauthenticated)
            RemoteUnavailableError: If a read failed (phase still moves to Ready)
        """
        self.state.phase = SyncPhase.LOADING
        self.state.read_lock = True
        self.state.last_error = None
        try:
            repository = self._repository_for_io()
            self.settings = await repository.read_settings()
            self.reservations = await repository.read_reservations()
            self.expenses = await repository.read_expenses()
            self.paid.replace(await repository.read_paid_months())
        except AuthExpiredError as e:
            self._expire(str(e))
            raise
        except AuthError as e:
            logger.error(f"Failed to load spreadsheet: {e}")
            self.state.last_error = str(e)
            self.state.phase = SyncPhase.UNAUTHENTICATED
            raise
        except RentalTaxError as e:
            logger.error(f"Failed to load spreadsheet: {e}")
            self.state.last_error = str(e)
            self.state.phase = SyncPhase.READY
            raise
        finally:
            self.state.read_lock = False

        self.state.phase = SyncPhase.READY
        logger.info(
            f"Loaded {len(self.reservations)} reservations, "
            f"{len(self.expenses)} expenses, {len(self.paid)} paid months"
        )

    # ========================================================================
    # Mutations
    # ========================================================================

    def add_reservation(
        self,
        check_in: date | datetime,
        nights: int,
        total: object,
        reservation_id: str | None = None,
    ) -> Reservation:
        """Add a reservation split with the current settings."""
        reservation = build_reservation(
            check_in, nights, total, self.settings, reservation_id
        )
        self.reservations.append(reservation)
        self._schedule_write(Collection.RESERVATIONS)
        return reservation

    def update_reservation(
        self,
        reservation_id: str,
        check_in: date | datetime | None = None,
        nights: int | None = None,
        total: object | None = None,
    ) -> Reservation:
        """
        Update a reservation.

        Changing the total splits it again with the current settings;
        otherwise the stored owner amount and admin fee are kept.
        """
        index = _index_of(self.reservations, reservation_id)
        existing = self.reservations[index]
        new_date = to_local_date(check_in) if check_in is not None else existing.date
        new_nights = nights if nights is not None else existing.nights

        if total is not None:
            updated = build_reservation(
                new_date, new_nights, total, self.settings, existing.id
            )
        else:
            try:
                updated = Reservation.model_validate(
                    {**existing.model_dump(), "date": new_date, "nights": new_nights}
                )
            except pydantic.ValidationError as e:
                raise ValidationError(f"Invalid reservation: {e}") from e

        self.reservations[index] = updated
        self._schedule_write(Collection.RESERVATIONS)
        return updated

    def remove_reservation(self, reservation_id: str) -> None:
        del self.reservations[_index_of(self.reservations, reservation_id)]
        self._schedule_write(Collection.RESERVATIONS)

    def add_expense(
        self,
        expense_date: date | datetime,
        amount: object,
        category: ExpenseCategory | None = None,
        notes: str | None = None,
        expense_id: str | None = None,
    ) -> Expense:
        expense = build_expense(expense_date, amount, category, notes, expense_id)
        self.expenses.append(expense)
        self._schedule_write(Collection.EXPENSES)
        return expense

    def update_expense(
        self,
        expense_id: str,
        expense_date: date | datetime | None = None,
        amount: object | None = None,
        category: ExpenseCategory | None | object = UNSET,
        notes: str | None | object = UNSET,
    ) -> Expense:
        """
        Update an expense.

        A date or amount left as None keeps its current value. Category and
        notes keep theirs unless passed; passing None clears them.
        """
        index = _index_of(self.expenses, expense_id)
        existing = self.expenses[index]
        updated = build_expense(
            expense_date if expense_date is not None else existing.date,
            amount if amount is not None else existing.amount,
            existing.category if category is UNSET else category,
            existing.notes if notes is UNSET else notes,
            existing.id,
        )
        self.expenses[index] = updated
        self._schedule_write(Collection.EXPENSES)
        return updated

    def remove_expense(self, expense_id: str) -> None:
        del self.expenses[_index_of(self.expenses, expense_id)]
        self._schedule_write(Collection.EXPENSES)

    def update_settings(
        self,
        dependents: int | None = None,
        owner_split: Decimal | float | str | None = None,
        admin_split: Decimal | float | str | None = None,
    ) -> AppSettings:
        """
        Change settings. Existing reservations keep their split.

        When only one split is given the other becomes its complement.

        Raises:
            ValidationError: If dependents is negative or splits do not sum to 1
        """
        values = self.settings.model_dump()
        try:
            if dependents is not None:
                values["dependents"] = dependents
            if owner_split is not None:
                values["owner_split"] = Decimal(str(owner_split))
                if admin_split is None:
                    values["admin_split"] = 1 - values["owner_split"]
            if admin_split is not None:
                values["admin_split"] = Decimal(str(admin_split))
                if owner_split is None:
                    values["owner_split"] = 1 - values["admin_split"]
            settings = AppSettings(**values)
        except (ArithmeticError, pydantic.ValidationError) as e:
            raise ValidationError(f"Invalid settings: {e}") from e

        self.settings = settings
        self._schedule_write(Collection.SETTINGS)
        return settings

    def mark_paid(self, month: str) -> bool:
        """Mark a month as paid. Tax rows are saved only if this changed anything."""
        try:
            changed = self.paid.mark_paid(month)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if changed:
            self._schedule_write(Collection.TAXES)
        return changed

    def mark_unpaid(self, month: str) -> bool:
        changed = self.paid.mark_unpaid(month)
        if changed:
            self._schedule_write(Collection.TAXES)
        return changed

    # ========================================================================
    # Derived views
    # ========================================================================

    def months(self) -> list[str]:
        return all_months(self.reservations, self.expenses)

    def summaries(self) -> list[MonthlyTaxSummary]:
        """Tax summary of every month with data, most recent first."""
        return self.aggregator.summaries(
            self.reservations, self.expenses, self.settings.dependents, self.paid
        )

    def summary(self, month: str) -> MonthlyTaxSummary:
        try:
            parse_month_key(month)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        return self.aggregator.summarize(
            month,
            self.reservations_in(month),
            group_by_month(self.expenses).get(month, []),
            self.settings.dependents,
            is_paid=self.paid.is_paid(month),
        )

    def reservations_in(self, month: str) -> list[Reservation]:
        return group_by_month(self.reservations).get(month, [])

    def occupancy_rate(self, month: str) -> int:
        return occupancy_rate(self.reservations_in(month))

    def filing_text(self, month: str) -> str:
        return format_reservations_for_filing(self.reservations_in(month))

    def year_over_year(self) -> list[YearOverYearPoint]:
        return self.aggregator.year_over_year(
            self.reservations, self.expenses, self.settings.dependents
        )

    def most_recent_unpaid_month(self, today: date | None = None) -> str | None:
        return most_recent_unpaid_month(self.months(), self.paid, today)

    # ========================================================================
    # Writes
    # ========================================================================

    def _schedule_write(self, collection: Collection) -> None:
        if self.state.phase is not SyncPhase.READY:
            logger.debug(
                f"Not saving {collection.value}: phase is {self.state.phase.value}"
            )
            return
        if self.state.read_lock:
            logger.debug(f"Not saving {collection.value}: loading in progress")
            return

        self.state.pending_writes.add(collection)
        self.scheduler.schedule(
            collection.value, self.autosave_delay, lambda: self._write(collection)
        )

    async def _write(self, collection: Collection) -> None:
        """Replace one sheet with the collection as it is right now."""
        self.state.pending_writes.discard(collection)
        if self.state.read_lock:
            logger.debug(f"Dropped {collection.value} write: loading in progress")
            return
        if self.state.phase is not SyncPhase.READY:
            logger.debug(f"Dropped {collection.value} write: not ready")
            return

        try:
            repository = self._repository_for_io()
            if collection is Collection.SETTINGS:
                await repository.write_settings(self.settings)
            elif collection is Collection.RESERVATIONS:
                await repository.write_reservations(list(self.reservations))
            elif collection is Collection.EXPENSES:
                await repository.write_expenses(list(self.expenses))
            else:
                await repository.write_tax_rows(self._tax_rows())
        except AuthExpiredError as e:
            self._expire(str(e))
        except RentalTaxError as e:
            logger.error(f"Failed to save {collection.value}: {e}")
            self.state.last_error = str(e)

    def _tax_rows(self) -> list[MonthlyTaxSummary]:
        # Paid months keep their row even when their records were removed
        months = set(self.months()) | self.paid.all_paid()
        return self.aggregator.summaries(
            self.reservations,
            self.expenses,
            self.settings.dependents,
            self.paid,
            months=months,
        )

    # ========================================================================
    # Internals
    # ========================================================================

    def _repository_for_io(self) -> SheetRepository:
        """
        Repository for the current session and spreadsheet.

        Raises:
            AuthExpiredError: If the token expired (checked before any I/O)
            AuthError: If not signed in
            ConfigurationError: If no spreadsheet is connected
        """
        token = self.session.token
        if token is None:
            raise AuthError("Not signed in")
        if self.session.is_expired():
            raise AuthExpiredError("Access token has expired")
        spreadsheet_id = self.session.spreadsheet_id
        if not spreadsheet_id:
            raise ConfigurationError("No spreadsheet connected")

        if self._repository is None:
            self._store = self.store_factory(token, spreadsheet_id)
            self._repository = SheetRepository(self._store, self.schema)
        return self._repository

    def _retire_store(self) -> None:
        # In-flight requests may still use the old store; it is closed in close()
        if self._store is not None:
            self._retired_stores.append(self._store)
        self._store = None
        self._repository = None

    def _reset_collections(self) -> None:
        self.settings = AppSettings()
        self.reservations = []
        self.expenses = []
        self.paid = PaidMonthTracker()

    def _expire(self, reason: str) -> None:
        logger.warning(f"Session expired: {reason}")
        self.scheduler.cancel_all()
        self.state.pending_writes.clear()
        self.session.clear()
        self._retire_store()
        self.state.phase = SyncPhase.UNAUTHENTICATED
        self.state.session_expired = True
        self.state.token_expires_at = None
        self.state.last_error = reason
        if self.on_session_expired is not None:
            self.on_session_expired()


def _index_of(records: list, record_id: str) -> int:
    for index, record in enumerate(records):
        if record.id == record_id:
            return index
    raise ValidationError(f"No record with id {record_id!r}")
