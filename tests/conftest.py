"""Shared fixtures: managers wired to the in-memory database."""

import pytest

from assignments import AssignmentManager
from chat import ModerationPipeline
from escrow import EscrowLedger
from monitoring import AlertManager
from service import TrustSafetyService
from tests.fakes import FakeDatabase, RecordingFanout

@pytest.fixture
def fake_db(monkeypatch):
    """In-memory database installed as every package's query module."""
    return FakeDatabase().install(monkeypatch)

@pytest.fixture
def fanout():
    return RecordingFanout()

@pytest.fixture
def assigner(fake_db):
    return AssignmentManager(fake_db.pool)

@pytest.fixture
def ledger(fake_db):
    return EscrowLedger(fake_db.pool)

@pytest.fixture
def alerts(fake_db, fanout):
    return AlertManager(fanout, fake_db.pool)

@pytest.fixture
def pipeline(fake_db, fanout, assigner, alerts):
    return ModerationPipeline(fanout, assigner, alerts, fake_db.pool)

@pytest.fixture
def service(fake_db, fanout, assigner, ledger, alerts, pipeline):
    return TrustSafetyService(
        fake_db.pool,
        fanout=fanout,
        assigner=assigner,
        ledger=ledger,
        alerts=alerts,
        pipeline=pipeline
    )

@pytest.fixture
def staff(fake_db):
    """Three eligible employees in creation order."""
    return [fake_db.add_user('EMPLOYEE') for _ in range(3)]

@pytest.fixture
def participants(fake_db):
    """A funded seeker and a verified provider."""
    seeker = fake_db.add_user('SEEKER')
    provider = fake_db.add_user('PROVIDER')
    fake_db.add_wallet(seeker, balance=500)
    return seeker, provider
