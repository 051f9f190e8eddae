from __future__ import annotations


class TsdbError(Exception):
    """Base class for failures talking to the time-series store."""


class TsdbConnectionError(TsdbError):
    """The write socket could not be opened, or broke while writing."""


class CircuitOpenError(TsdbConnectionError):
    """Dialing was refused because recent reconnect sequences all failed."""


class TsdbQueryError(TsdbError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        uri: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.uri = uri

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.status_code}: {self.message}"
