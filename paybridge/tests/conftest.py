"""Shared fixtures for the billing test suite."""
from __future__ import annotations

import pathlib
import sys
from typing import List

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from paybridge.app.audit import BillingAuditEvent, BillingEventLogger  # noqa: E402
from paybridge.app.billing import BillingService  # noqa: E402
from paybridge.app.gateway import SandboxGateway  # noqa: E402


class RecordingEventLogger(BillingEventLogger):
    def __init__(self) -> None:
        self.events: List[BillingAuditEvent] = []

    def log(self, event: BillingAuditEvent) -> None:
        self.events.append(event)


@pytest.fixture
def sandbox() -> SandboxGateway:
    return SandboxGateway()


@pytest.fixture
def events() -> RecordingEventLogger:
    return RecordingEventLogger()


@pytest.fixture
def billing(sandbox: SandboxGateway, events: RecordingEventLogger) -> BillingService:
    return BillingService.from_gateway(sandbox, event_logger=events, retire_concurrency=2)
