from __future__ import annotations

from tests.di_test_services.helpers import record_construction


class AuditLog:
    def __init__(self) -> None:
        record_construction("AuditLog")
        self.entries: list[str] = []

    def record(self, entry: str) -> None:
        self.entries.append(entry)


default = AuditLog
