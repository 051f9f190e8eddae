from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ConnectionStatus:
    connected: bool
    circuit_state: str
    reconnects: int
    failures: int
    last_error: str | None = None

    @property
    def ready(self) -> bool:
        return self.circuit_state != "open"
