from __future__ import annotations

from tests.di_test_services.helpers import append_order, record_construction


# No `default` export: the loader falls back to the attribute named after
# the service class.
class SmtpTransport:
    def __init__(self, host: str) -> None:
        record_construction("SmtpTransport")
        self.host = host
        self.connected = False

    async def connect(self) -> None:
        append_order("connect")
        self.connected = True
