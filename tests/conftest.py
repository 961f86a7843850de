"""
テスト共通設定

アプリのインポート前に環境変数を設定し、インメモリSQLiteと
外部サービス未設定の状態でテストします。
"""
import base64
import hashlib
import hmac
import json
import os
import tempfile
from datetime import date, timedelta

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REMINDER_SCHEDULER_ENABLED"] = "false"
os.environ["LINE_CHANNEL_SECRET"] = "test-channel-secret"
os.environ["LINE_CHANNEL_ACCESS_TOKEN"] = ""
os.environ["LINE_BOT_ID"] = "@test-bot"
os.environ["SLACK_BOT_TOKEN"] = ""
os.environ["SLACK_CHANNEL_ID"] = ""
os.environ["LEDGER_API_BASE_URL"] = ""
os.environ["CUSTOMER_CHECKLIST_URL"] = "https://example.com/checklist"
os.environ["AZURE_OPENAI_API_KEY"] = ""
os.environ["AZURE_OPENAI_ENDPOINT"] = ""
os.environ["MESSAGE_TEMPLATES_PATH"] = os.path.join(tempfile.mkdtemp(), "message_templates.json")

import httpx
import pytest

from app.database import Base, SessionLocal, engine
from app.models.deal import DealCreate
from app.models.phase import Priority
from app.services import ledger_service as ledger_module
from app.services import line_client as line_client_module
from app.services import pending_selection as pending_module
from app.services import template_service as template_module
from app.services.deal_store import DealStore
from app.services.line_client import LineClient
from app.services.pending_selection import PendingSelectionStore
from app.services.template_service import TemplateStore
import app.models.deal_db  # noqa: F401

LINE_CHANNEL_SECRET = "test-channel-secret"


def sign_line_body(body: bytes, secret: str = LINE_CHANNEL_SECRET) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


class FakeLineApi:
    """LINE Messaging API のモック（httpx.MockTransport）"""

    def __init__(self):
        self.pushes = []
        self.profiles = {}
        self.push_status = 200
        self.client = LineClient(
            access_token="test-token",
            base_url="https://api.line.test/v2/bot",
            transport=httpx.MockTransport(self._handle),
        )

    def _handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith("/v2/bot/profile/"):
            user_id = path.rsplit("/", 1)[-1]
            if user_id in self.profiles:
                return httpx.Response(200, json={"userId": user_id, "displayName": self.profiles[user_id]})
            return httpx.Response(404, json={"message": "Not found"})
        if path == "/v2/bot/message/push":
            self.pushes.append(json.loads(request.content))
            return httpx.Response(self.push_status, json={})
        return httpx.Response(404, json={})

    def messages_to(self, user_id: str) -> list:
        return [m for push in self.pushes if push["to"] == user_id for m in push["messages"]]

    def texts_to(self, user_id: str) -> list:
        return [m["text"] for m in self.messages_to(user_id)]


@pytest.fixture(autouse=True)
def reset_database():
    """テストごとにテーブルを作り直す"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(autouse=True)
def reset_singletons(tmp_path):
    """プロセス内で共有されるサービスをテストごとに初期化"""
    template_module._template_store = TemplateStore(str(tmp_path / "message_templates.json"))
    pending_module._pending_store = PendingSelectionStore(ttl=timedelta(minutes=30))
    line_client_module._line_client = None
    ledger_module._ledger_service = None
    yield
    line_client_module._line_client = None
    ledger_module._ledger_service = None


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def store(db_session):
    return DealStore(db_session)


@pytest.fixture
def make_deal(store):
    """案件を作成するファクトリ（DealRecordを返す）"""
    def _make(**overrides):
        fields = dict(
            title="渋谷区 1LDK マンション",
            client="田中太郎",
            priority=Priority.MEDIUM,
            due_date=date(2026, 10, 20),
        )
        fields.update(overrides)
        return store.create(DealCreate(**fields))
    return _make


@pytest.fixture
def template_store():
    return template_module.get_template_store()


@pytest.fixture
def pending_store():
    return pending_module.get_pending_selection_store()


@pytest.fixture
def line_api():
    """LINE APIのモックをシングルトンに差し込む"""
    api = FakeLineApi()
    line_client_module._line_client = api.client
    return api


@pytest.fixture
def line_signature():
    """LINE Webhook署名の生成関数"""
    return sign_line_body
