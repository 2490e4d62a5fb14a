"""Domain errors. main.py maps them onto HTTP responses."""


class TicketdeskError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidRequest(TicketdeskError):
    """Malformed or inconsistent input. Never retried."""
    status_code = 422


class InvalidTransition(InvalidRequest):
    def __init__(self, current: str, target: str):
        super().__init__(f"Status change {current} -> {target} is not allowed")
        self.current = current
        self.target = target


class NotFound(TicketdeskError):
    status_code = 404

    def __init__(self, entity: str, key: str):
        super().__init__(f"{entity} not found: {key}")
        self.entity = entity
        self.key = key
