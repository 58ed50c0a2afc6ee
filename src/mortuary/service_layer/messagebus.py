# pylint: disable=broad-except
"""Message bus for the mortuary service following Cosmic Python pattern."""

from __future__ import annotations
import logging
from typing import List, Dict, Callable, Type, Union, TYPE_CHECKING

from shared.domain.commands import Command, Event
from mortuary.domain import commands, events
from mortuary.domain.exceptions import MortuaryError
from mortuary.service_layer import handlers

if TYPE_CHECKING:
    from mortuary.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)

Message = Union[Command, Event]


def handle(
    message: Message,
    uow: AbstractUnitOfWork,
):
    """Handle message (command or event) with the appropriate handler."""
    results = []
    queue = [message]

    while queue:
        message = queue.pop(0)

        if isinstance(message, Event):
            handle_event(message, queue, uow)
        elif isinstance(message, Command):
            cmd_result = handle_command(message, queue, uow)
            results.append(cmd_result)
        else:
            raise Exception(f"{message} was not an Event or Command")

    return results


def handle_event(
    event: Event,
    queue: List[Message],
    uow: AbstractUnitOfWork,
):
    """Handle event by calling all registered event handlers."""
    for handler in EVENT_HANDLERS[type(event)]:
        try:
            logger.debug(f"handling event {event} with handler {handler}")
            handler(event, uow=uow)
            queue.extend(uow.collect_new_events())
        except Exception:
            logger.exception("Exception handling event %s", event)
            continue


def handle_command(
    command: Command,
    queue: List[Message],
    uow: AbstractUnitOfWork,
):
    """Handle command by calling the registered command handler."""
    logger.debug(f"handling command {command}")
    try:
        handler = COMMAND_HANDLERS[type(command)]
        result = handler(command, uow=uow)
        queue.extend(uow.collect_new_events())
        return result
    except MortuaryError as e:
        # expected outcome of a guarded operation, reported to the caller
        logger.warning("%s rejected %s: %s", type(command).__name__, type(e).__name__, e)
        raise
    except Exception:
        logger.exception("Exception handling command %s", command)
        raise


# Event handlers - multiple handlers can respond to same event
EVENT_HANDLERS = {
    events.CaseRegistered: [handlers.publish_event],
    events.CaseStateChanged: [handlers.publish_event],
    events.CustodyTransferred: [handlers.publish_event],
    events.CorrectionRequestCreated: [
        handlers.notify_responsible_nurse,
        handlers.publish_event,
    ],
    events.CorrectionRequestResolved: [
        handlers.notify_guards_of_resolution,
        handlers.publish_event,
    ],
    events.TrayAssigned: [
        handlers.check_occupancy_threshold,
        handlers.publish_event,
    ],
    events.TrayReleased: [handlers.publish_event],
    events.TrayManuallyReleased: [
        handlers.notify_supervisors_of_manual_release,
        handlers.publish_event,
    ],
    events.TrayStatusChanged: [handlers.publish_event],
}  # type: Dict[Type[Event], List[Callable]]

# Command handlers - single handler per command type
COMMAND_HANDLERS = {
    commands.RegisterCase: handlers.register_case,
    commands.TransferCustody: handlers.transfer_custody,
    commands.RegisterVerification: handlers.register_verification,
    commands.ResolveCorrectionRequest: handlers.resolve_correction_request,
    commands.CreateTray: handlers.create_tray,
    commands.AssignTray: handlers.assign_tray,
    commands.ReleaseTray: handlers.release_tray,
    commands.ManualReleaseTray: handlers.manual_release_tray,
    commands.StartTrayMaintenance: handlers.start_tray_maintenance,
    commands.FinishTrayMaintenance: handlers.finish_tray_maintenance,
    commands.MarkTrayOutOfService: handlers.mark_tray_out_of_service,
    commands.RestoreTray: handlers.restore_tray,
    commands.AttemptRelease: handlers.attempt_release,
    commands.PlaceReleaseHold: handlers.place_release_hold,
    commands.LiftReleaseHold: handlers.lift_release_hold,
}  # type: Dict[Type[Command], Callable]
