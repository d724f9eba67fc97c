class RetenesError(Exception):
    """
    Base class for errors raised by the on-call scheduling service.
    """


class ValidationError(RetenesError):
    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or []


class NotFoundError(RetenesError):
    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class InvalidPhoneError(RetenesError):
    pass


class ServiceError(RetenesError):
    """
    Any other persistence failure. The message is the backend's own.
    """


class FetchSuperseded(RetenesError):
    pass
