"""
Wiring of the scheduling use cases

build_handlers() assembles the command handlers with their repositories
and settings; register_command_handlers() puts them on a message bus.
"""

from dataclasses import dataclass
from datetime import timedelta

from django.conf import settings  # type: ignore

from shared.application.locks import KeyedLocks, resource_locks
from shared.application.message_bus import MessageBus, message_bus
from shared.application.uow import DjangoUnitOfWork
from shared.domain.clock import Clock, system_clock

from .command_handlers import (
    CancelAppointmentCommand,
    CancelAppointmentHandler,
    ChangeResourceCapacityCommand,
    ChangeResourceCapacityHandler,
    CompleteAppointmentCommand,
    CompleteAppointmentHandler,
    ConfirmAppointmentCommand,
    ConfirmAppointmentHandler,
    ExpireAppointmentCommand,
    ExpireAppointmentHandler,
    RemindAppointmentCommand,
    RemindAppointmentHandler,
    ReserveSlotCommand,
    ReserveSlotHandler,
)


@dataclass
class SchedulingHandlers:
    reserve: ReserveSlotHandler
    confirm: ConfirmAppointmentHandler
    cancel: CancelAppointmentHandler
    expire: ExpireAppointmentHandler
    complete: CompleteAppointmentHandler
    remind: RemindAppointmentHandler
    change_capacity: ChangeResourceCapacityHandler

    def by_command(self) -> dict:
        return {
            ReserveSlotCommand: self.reserve,
            ConfirmAppointmentCommand: self.confirm,
            CancelAppointmentCommand: self.cancel,
            ExpireAppointmentCommand: self.expire,
            CompleteAppointmentCommand: self.complete,
            RemindAppointmentCommand: self.remind,
            ChangeResourceCapacityCommand: self.change_capacity,
        }


def build_handlers(
    *,
    clock: Clock = system_clock,
    bus: MessageBus | None = None,
    uow_factory=DjangoUnitOfWork,
    locks: KeyedLocks = resource_locks,
    appointment_repo=None,
    ledger_repo=None,
    catalog=None,
    otp_issuer=None,
) -> SchedulingHandlers:
    from apps.scheduling.repositories import (
        DjangoAppointmentRepository,
        DjangoCatalog,
        DjangoSlotLedgerRepository,
    )

    if otp_issuer is None:
        from apps.verification.services import get_otp_issuer
        otp_issuer = get_otp_issuer(clock)

    appointment_repo = appointment_repo or DjangoAppointmentRepository()
    ledger_repo = ledger_repo or DjangoSlotLedgerRepository()
    catalog = catalog or DjangoCatalog()

    common = dict(
        clock=clock,
        bus=bus,
        uow_factory=uow_factory,
        locks=locks,
        max_attempts=getattr(settings, "APPOINTMENT_RESERVATION_MAX_ATTEMPTS", 3),
    )

    return SchedulingHandlers(
        reserve=ReserveSlotHandler(
            appointment_repo,
            ledger_repo,
            catalog,
            confirmation_window=timedelta(
                minutes=getattr(settings, "APPOINTMENT_CONFIRMATION_WINDOW_MINUTES", 15)
            ),
            **common,
        ),
        confirm=ConfirmAppointmentHandler(appointment_repo, otp_issuer, **common),
        cancel=CancelAppointmentHandler(appointment_repo, ledger_repo, **common),
        expire=ExpireAppointmentHandler(appointment_repo, ledger_repo, **common),
        complete=CompleteAppointmentHandler(appointment_repo, **common),
        remind=RemindAppointmentHandler(
            appointment_repo,
            lead=timedelta(minutes=getattr(settings, "APPOINTMENT_REMINDER_LEAD_MINUTES", 60)),
            **common,
        ),
        change_capacity=ChangeResourceCapacityHandler(ledger_repo, **common),
    )


def register_command_handlers(bus: MessageBus = message_bus, handlers: SchedulingHandlers | None = None):
    """Register every scheduling command on ``bus``; already registered commands are kept"""
    handlers = handlers or build_handlers(bus=bus if bus is not message_bus else None)
    for command_type, handler in handlers.by_command().items():
        if bus.has_command_handler(command_type):
            continue
        bus.register_command_handler(command_type, handler.handle)
    return handlers
