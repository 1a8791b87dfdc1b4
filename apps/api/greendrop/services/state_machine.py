from greendrop.models.domain import TERMINAL_ORDER_STATUSES, OrderStatus

_FORWARD_SEQUENCE = (
    OrderStatus.CREATED,
    OrderStatus.PAID,
    OrderStatus.CONFIRMED,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)


def _build_transitions() -> dict[OrderStatus, set[OrderStatus]]:
    transitions: dict[OrderStatus, set[OrderStatus]] = {}
    for index, status in enumerate(_FORWARD_SEQUENCE):
        if status in TERMINAL_ORDER_STATUSES:
            transitions[status] = set()
            continue
        # Forward steps may be skipped (e.g. cash orders never pass through "paid").
        transitions[status] = set(_FORWARD_SEQUENCE[index + 1 :]) | {OrderStatus.CANCELLED}
    transitions[OrderStatus.CANCELLED] = set()
    return transitions


ORDER_STATE_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = _build_transitions()


class InvalidTransitionError(Exception):
    def __init__(self, current: OrderStatus, next_status: OrderStatus) -> None:
        super().__init__(f"Invalid state transition: {current.value} -> {next_status.value}")
        self.current = current
        self.next_status = next_status


class TerminalStateError(InvalidTransitionError):
    pass


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_ORDER_STATUSES


def ensure_valid_transition(current: OrderStatus, next_status: OrderStatus) -> None:
    if next_status == current:
        return

    if is_terminal(current):
        raise TerminalStateError(current, next_status)

    allowed = ORDER_STATE_TRANSITIONS.get(current, set())
    if next_status not in allowed:
        raise InvalidTransitionError(current, next_status)
