"""Structured failure raised by every external client call."""


class ClientError(Exception):
    """Raised when a call to an external collaborator fails.

    The message always reads "<step> failed: <cause>" so that plain-text
    consumers (logs, the run summary) still see which step broke, while
    callers that care can inspect the structured fields directly.

    Attributes:
        step (str): Name of the failing operation (e.g. "fetchCiphertext").
        cause (str): Human-readable failure cause.
        status_code (int | None): HTTP status code, if the failure came from a response.
        engine (str | None): Engine name of the client that raised (e.g. "walrus").
    """

    def __init__(self, step: str, cause: str, status_code: int | None = None, engine: str | None = None) -> None:
        self.step = step
        self.cause = cause
        self.status_code = status_code
        self.engine = engine
        super().__init__(f"{step} failed: {cause}")

    def is_rate_limited(self) -> bool:
        return self.status_code == 429
