import fakeredis
import pytest
from fastapi.testclient import TestClient

from soundsteps.config import Settings
from soundsteps.data.content import LessonCatalog
from soundsteps.errors import ProviderError
from soundsteps.main import create_app
from soundsteps.services.completion import CompletionPipeline
from soundsteps.services.provider import MockProvider
from soundsteps.services.scheduler import DeferredTasks
from soundsteps.services.session import SessionStore
from soundsteps.services.sms_flow import SmsFlowEngine
from soundsteps.voice.engine import VoiceFlowEngine

LEARNER_PHONE = "+254711000001"
CAREGIVER_PHONE = "+254722000002"


class FlakyProvider(MockProvider):
    """Mock provider that fails selected actions or recipients."""

    def __init__(self, fail_sms_to=(), fail_airtime=False):
        super().__init__()
        self.fail_sms_to = set(fail_sms_to)
        self.fail_airtime = fail_airtime

    async def send_text(self, to, body):
        if to in self.fail_sms_to:
            raise ProviderError(f"SMS to {to} rejected", "mock", 500)
        return await super().send_text(to, body)

    async def send_airtime(self, to, amount, currency):
        if self.fail_airtime:
            raise ProviderError(f"Airtime to {to} rejected", "mock", 500)
        return await super().send_airtime(to, amount, currency)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        at_api_key="",
        base_url="http://soundsteps.test",
        sms_question_delay=0,
        debug=True,
    )


@pytest.fixture
def redis_client():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def store(redis_client, settings):
    return SessionStore(client=redis_client, settings=settings)


@pytest.fixture
def lessons():
    return LessonCatalog()


@pytest.fixture
def provider():
    return MockProvider()


@pytest.fixture
def scheduler():
    return DeferredTasks()


@pytest.fixture
def voice_engine(store, lessons, settings):
    return VoiceFlowEngine(store, lessons, settings)


@pytest.fixture
def sms_engine(store, lessons, provider, scheduler, settings):
    return SmsFlowEngine(store, lessons, provider, scheduler, settings)


@pytest.fixture
def pipeline(store, provider, settings):
    return CompletionPipeline(store, provider, settings)


@pytest.fixture
def client(settings, store, provider, lessons):
    app = create_app(settings=settings, store=store, provider=provider, lessons=lessons)
    with TestClient(app) as test_client:
        yield test_client
