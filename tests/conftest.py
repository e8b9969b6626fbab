from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from packvault import models, pull_rates
from packvault.auth import sign_token
from packvault.config import get_settings
from packvault.database import Base, build_engine, get_db
from packvault.main import app


class FixedRandom:
    """Replays ``values`` in order, then keeps returning the last one."""

    def __init__(self, *values):
        self.values = list(values) or [0.0]
        self.calls = 0

    def random(self):
        value = self.values[min(self.calls, len(self.values) - 1)]
        self.calls += 1
        return value


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{(tmp_path / 'packvault-test.db').as_posix()}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    def _make(username="ash", credits="100.00"):
        user = models.User(username=username, email=f"{username}@example.com", credits=Decimal(credits))
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_card(db):
    def _make(name, tier, credits="1.00", stock=0, is_active=True):
        card = models.Card(name=name, tier=tier, credits=Decimal(credits), stock=stock, is_active=is_active)
        db.add(card)
        db.commit()
        return card

    return _make


@pytest.fixture
def make_pack(db):
    def _make(type="pokeball", kind="regular", price="0.00", total_packs=None, prizes=None):
        pack = models.Pack(
            name=f"{type.capitalize()} {kind} pack",
            type=type,
            kind=kind,
            price=Decimal(price),
            total_packs=total_packs,
        )
        db.add(pack)
        db.flush()
        for card, quantity in (prizes or {}).items():
            db.add(models.PrizePoolEntry(pack_id=pack.id, card_id=card.id, quantity=quantity))
        db.commit()
        return pack

    return _make


@pytest.fixture
def give_pack(db):
    def _give(user, pack, tier=None, earned_from="plinko"):
        user_pack = models.UserPack(
            user_id=user.id,
            pack_id=pack.id,
            tier=tier or pack.type,
            earned_from=earned_from,
        )
        db.add(user_pack)
        db.commit()
        return user_pack

    return _give


@pytest.fixture
def rates(db):
    def _set(pack_type, table):
        pull_rates.set_rates(
            db,
            pack_type,
            [{"card_tier": t, "probability": p} for t, p in table.items()],
            updated_by="test",
        )
        db.commit()

    return _set


@pytest.fixture
def catalog(make_card):
    """Eight commons and one card of every hit tier."""
    commons = [make_card(f"Common {i}", "D", credits="0.50") for i in range(8)]
    hits = {tier: make_card(f"{tier} card", tier, credits="5.00") for tier in models.HIT_TIERS}
    return commons, hits


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {sign_token(user)}"}

    return _headers


@pytest.fixture
def admin_headers():
    return {"admin-secret": get_settings().admin_secret}
