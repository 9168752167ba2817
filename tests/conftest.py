from datetime import datetime

import pytest

from app import create_app
from db import Store
from models import Doctor


class FrozenClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def store():
    store = Store('sqlite://')
    store.create_all()
    yield store
    store.dispose()


@pytest.fixture
def session(store):
    with store.session() as s:
        yield s


@pytest.fixture
def doctor(session):
    d = Doctor(name='Dr. Meera Iyer', specialty='General', is_available=True)
    session.add(d)
    session.flush()
    return d


@pytest.fixture
def clock():
    # a Monday morning
    return FrozenClock(datetime(2024, 6, 3, 8, 5))


@pytest.fixture
def app(store, clock):
    app = create_app({'TESTING': True, 'ADMIN_TOKEN': 'test-admin-token'}, store=store, clock=clock)
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def headers(actor_id, role):
    return {'X-Actor-Id': str(actor_id), 'X-Actor-Role': role}


@pytest.fixture
def reception():
    return headers('staff-1', 'reception')


@pytest.fixture
def nurse():
    return headers('nurse-1', 'nurse')


@pytest.fixture
def api_doctor(store):
    with store.session() as s:
        d = Doctor(name='Dr. Karan Nair', specialty='ENT', is_available=True)
        s.add(d)
        s.flush()
        return d.id
