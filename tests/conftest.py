import os
import sys

import pytest

TESTS_DIR = os.path.dirname(os.path.abspath(__file__))
SOURCE_DIR = os.path.join(os.path.dirname(TESTS_DIR), "pipeline")

for path in (SOURCE_DIR, TESTS_DIR):
    if path not in sys.path:
        sys.path.insert(0, path)

from tools.fakes import (  # noqa: E402
    FakeBlobStore,
    FakeProvingSystem,
    RecordingStatus,
    make_payload,
)
from tools.file_server import FileServer  # noqa: E402


@pytest.fixture
def store():
    return FakeBlobStore()


@pytest.fixture
def status():
    return RecordingStatus()


@pytest.fixture
def prover():
    return FakeProvingSystem()


@pytest.fixture
def payload():
    return make_payload()


@pytest.fixture
def file_server(tmp_path):
    served = tmp_path / "served"
    served.mkdir()
    server = FileServer(str(served)).start()
    yield server
    server.stop()
