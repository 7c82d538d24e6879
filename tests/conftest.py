import os
import tempfile
from pathlib import Path

import pytest
from werkzeug.security import generate_password_hash

# keep test runs out of the real log directory
os.environ.setdefault("PIFACE_LOG_DIR", tempfile.mkdtemp(prefix="piface_log_"))

from app import create_app  # noqa: E402
from fixtures.fake_sftp import FakeConnector  # noqa: E402
from services.accounts import AccountTable  # noqa: E402
from services.file_manager import FileManager, FileManagerConfig  # noqa: E402


ALICE_PASSWORD = "wonderland"
BOB_PASSWORD = "builder"


@pytest.fixture
def accounts():
    return AccountTable.from_records([
        {"name": "alice", "password": ALICE_PASSWORD, "storage_limit": 1},
        {"name": "Bob", "password_hash": generate_password_hash(BOB_PASSWORD), "storageLimit": 0.5},
    ])


@pytest.fixture
def device_dir(tmp_path):
    d = tmp_path / "device"
    (d / "home" / "pi").mkdir(parents=True)
    return d


@pytest.fixture
def connector(device_dir):
    return FakeConnector(device_dir)


@pytest.fixture
def local_dir(tmp_path):
    d = tmp_path / "local"
    d.mkdir()
    return d


@pytest.fixture
def config(tmp_path, local_dir):
    return FileManagerConfig(
        base_dir="pi-interface",
        session_ttl=900,
        spool_dir=str(tmp_path / "spool"),
        local_roots=[str(local_dir)],
        job_ttl=900,
        max_jobs=100,
        state_dir=str(tmp_path / "state"),
    )


@pytest.fixture
def fm(accounts, connector, config):
    manager = FileManager(accounts, connector, config)
    yield manager
    manager.shutdown()


@pytest.fixture
def alice(fm):
    """alice's open session (not held)."""
    return fm.sessions.acquire("alice")


@pytest.fixture
def alice_dir(device_dir, alice):
    """Local directory backing alice's remote root."""
    return Path(device_dir) / alice.root_path.lstrip("/")


@pytest.fixture
def app(fm):
    flask_app = create_app(fm, environ={"PIFACE_SECRET_KEY": "test-secret"})
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, name="alice", password=ALICE_PASSWORD):
    """Log ``client`` in; returns headers carrying the CSRF token."""
    resp = client.post("/api/session", json={"name": name, "password": password})
    assert resp.status_code == 200, resp.get_json()
    return {"X-CSRF-Token": resp.get_json()["csrf_token"]}
