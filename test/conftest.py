import json
from datetime import datetime

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from activity_notifier.config import Settings
from activity_notifier.database import build_engine, build_session_factory, create_tables
from activity_notifier.models import ActivityRow, AlertRow, LocationPreferenceRow, ProfileRow, SportRow
from activity_notifier.store import ActivityStore

PROJECT_ID = "teamup-test"
TOKEN_URL = "https://oauth2.googleapis.com/token"
FCM_URL = f"https://fcm.googleapis.com/v1/projects/{PROJECT_ID}/messages:send"


@pytest.fixture(scope="session")
def private_key_pem():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


@pytest.fixture
def service_account_info(private_key_pem):
    return {
        "type": "service_account",
        "project_id": PROJECT_ID,
        "private_key_id": "key-1",
        "private_key": private_key_pem,
        "client_email": "notifier@teamup-test.iam.gserviceaccount.com",
        "client_id": "1234567890",
        "token_uri": TOKEN_URL,
    }


@pytest.fixture
def settings(service_account_info):
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        firebase_service_account_json=json.dumps(service_account_info),
        log_json=False,
    )


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    create_tables(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return ActivityStore(session_factory)


@pytest.fixture
def seed(session_factory):
    """Insert ORM rows: seed(ActivityRow(...), ProfileRow(...), ...)"""
    def _seed(*rows):
        with session_factory() as db:
            db.add_all(rows)
            db.commit()
    return _seed


@pytest.fixture
def count_alerts(session_factory):
    def _count(activity_id=None):
        with session_factory() as db:
            query = db.query(AlertRow)
            if activity_id is not None:
                query = query.filter(AlertRow.activity_id == str(activity_id))
            return query.count()
    return _count


@pytest.fixture
def tennis_region_scenario(seed):
    """Activity 42 in region 5 created by u1; u3 has no preferred sports"""
    seed(
        SportRow(id="tennis", name="Tenis"),
        ActivityRow(
            id="42",
            title="Dobles en el parque",
            date=datetime(2026, 11, 2, 18, 30),
            region_id=5,
            comuna_id=None,
            sport_id="tennis",
            place_name="Parque Central",
            formatted_address="Av. Siempre Viva 742",
            creator_id="u1",
        ),
        LocationPreferenceRow(user_id="u1", region_id=5),
        LocationPreferenceRow(user_id="u2", region_id=5),
        LocationPreferenceRow(user_id="u3", region_id=5),
        ProfileRow(id="u1", fcm_token="tok-u1", preferred_sport_ids=["tennis"], notify_new_activity=True),
        ProfileRow(id="u2", fcm_token="tok-u2", preferred_sport_ids=["tennis"], notify_new_activity=True),
        ProfileRow(id="u3", fcm_token="tok-u3", preferred_sport_ids=[], notify_new_activity=True),
    )


class FakeGateway:
    """Stands in for the OAuth token endpoint and the FCM API"""

    def __init__(self):
        self.requests = []
        self.failing_tokens = set()
        self.token_status = 200
        self.token_body = {"access_token": "ya29.test-token", "expires_in": 3599, "token_type": "Bearer"}

    @property
    def token_requests(self):
        return [r for r in self.requests if str(r.url) == TOKEN_URL]

    @property
    def push_requests(self):
        return [r for r in self.requests if str(r.url) != TOKEN_URL]

    def pushed_tokens(self):
        return [json.loads(r.content)["message"]["token"] for r in self.push_requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) == TOKEN_URL:
            return httpx.Response(self.token_status, json=self.token_body)
        if str(request.url) == FCM_URL:
            token = json.loads(request.content)["message"]["token"]
            if token in self.failing_tokens:
                return httpx.Response(
                    404,
                    json={"error": {"code": 404, "message": "Requested entity was not found.", "status": "NOT_FOUND"}},
                )
            return httpx.Response(200, json={"name": f"projects/{PROJECT_ID}/messages/{token}"})
        return httpx.Response(404, text="unexpected url")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def http_client(gateway):
    return httpx.AsyncClient(transport=httpx.MockTransport(gateway))
