"""
Shared fixtures: a throwaway SQLite database per test, plus a Flask test client.
"""
import pytest
from sqlalchemy.orm import sessionmaker

from safety_tracker.app import create_app
from safety_tracker.db import Base, make_engine
from safety_tracker.locations import create_establishment, create_location


@pytest.fixture
def db(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=eng)
    session = sessionmaker(autocommit=False, autoflush=False, bind=eng)()
    yield session
    session.close()
    eng.dispose()


@pytest.fixture
def establishment(db):
    return create_establishment(db, {
        "name": "Acme Fabrication",
        "street_address": "1 Main St",
        "city": "Springfield",
        "state": "IL",
        "zip_code": "62701",
        "industry_description": "Sheet metal",
        "naics_code": "332322",
    })


@pytest.fixture
def location(db, establishment):
    return create_location(db, establishment.id, {"name": "Shop Floor"})


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "DATABASE_URL": f"sqlite:///{tmp_path / 'app.db'}",
        "UPLOAD_DIR": str(tmp_path / "uploads"),
        "EXPORT_DIR": str(tmp_path / "exports"),
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()
