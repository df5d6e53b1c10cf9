from clinic_backend.models.appointment import AppointmentStatus
from clinic_backend.scheduling.errors import InvalidTransition

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.IN_PROGRESS: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}


def allowed_transitions(current: AppointmentStatus) -> frozenset[AppointmentStatus]:
    return ALLOWED_TRANSITIONS[current]


def is_terminal(current: AppointmentStatus) -> bool:
    return not ALLOWED_TRANSITIONS[current]


def validate_transition(current: AppointmentStatus, next_status: AppointmentStatus) -> None:
    if next_status in ALLOWED_TRANSITIONS[current]:
        return

    if is_terminal(current):
        raise InvalidTransition(
            f'Appointment is {current.value} and can no longer change status. Book a new appointment instead.'
        )
    raise InvalidTransition(f'Cannot change appointment status from {current.value} to {next_status.value}.')
