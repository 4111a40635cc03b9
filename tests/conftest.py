import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.config import settings
from app.database import Base, get_db
from app.main import app as fastapi_app
from app.models import Unit, UnitStatus
from app.schemas import BallotPayload, RegistryUnit, YesNoVote
from app.services import election_ledger as ledger


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _fk_on(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory, tmp_path, monkeypatch):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(settings, "generated_dir", tmp_path / "generated")
    monkeypatch.setattr(settings, "upload_dir", tmp_path / "uploads")
    fastapi_app.dependency_overrides[get_db] = _get_db
    yield TestClient(fastapi_app)
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def four_units(db):
    """Four occupied units of 25% each."""
    units = [
        Unit(unit_number=str(n), owner_name=f"Owner {n}", voting_pct=25.0, status=UnitStatus.OCCUPIED)
        for n in (101, 102, 103, 104)
    ]
    db.add_all(units)
    db.commit()
    return units


def registry_of(units):
    return {
        u.unit_number: RegistryUnit(
            unit_number=u.unit_number, owner=u.owner_name, voting_pct=u.voting_pct, status=u.status,
        )
        for u in units
    }


@pytest.fixture
def open_motion(db):
    """An open election with a single yes/no item and a 50% quorum."""
    election = ledger.create_election(db, title="Roof repair", created_by="Board", quorum_required=50.0)
    ledger.add_ballot_item(db, election.id, title="Approve roof repair")
    ledger.open_election(db, election.id, "Board")
    return election


def yes_no_payload(election, unit_number, choice, **kwargs):
    return BallotPayload(
        unit_number=unit_number,
        votes={item.id: YesNoVote(choice=choice) for item in election.items},
        **kwargs,
    )
