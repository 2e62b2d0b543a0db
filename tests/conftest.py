import pytest
from fake_api import FakeApi
from ortbind import Engine

@pytest.fixture
def api():
    return FakeApi()

@pytest.fixture
def engine(api):
    engine = Engine(api)
    engine.create_environment()
    engine.create_session("identity.onnx")
    yield engine
    engine.release()
