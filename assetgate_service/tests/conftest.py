import pytest
from fastapi.testclient import TestClient

from assetgate.collaborators import InMemoryBlobStorage, StaticChainQuery
from assetgate.signing import ReceiptSigner, generate_key, public_entry
from assetgate_api.auth import make_caller_token
from assetgate_api.db import SqliteAuditLog, SqliteComplianceStore
from assetgate_api.keys import StaticKeyProvider
from assetgate_api.main import create_app
from assetgate_api.util import now_epoch


@pytest.fixture(scope="session")
def identity_key():
    return generate_key("kid:identity-test")


@pytest.fixture(scope="session")
def receipt_key():
    return generate_key("kid:receipts-test")


@pytest.fixture(scope="session")
def trust_store(identity_key, receipt_key):
    return {
        "receipt_keys": [public_entry(receipt_key)],
        "identity_keys": [public_entry(identity_key)],
    }


@pytest.fixture
def store(tmp_path):
    s = SqliteComplianceStore(str(tmp_path / "assetgate.db"))
    yield s
    s.close()


@pytest.fixture
def blob():
    return InMemoryBlobStorage()


@pytest.fixture
def chain():
    return StaticChainQuery()


@pytest.fixture
def make_app(store, blob, chain, trust_store, receipt_key):
    def _make(**overrides):
        kwargs = dict(
            store=store,
            audit=SqliteAuditLog(store.db),
            blob=blob,
            chain=chain,
            key_provider=StaticKeyProvider(ReceiptSigner.from_key(receipt_key), trust_store),
        )
        kwargs.update(overrides)
        return create_app(**kwargs)
    return _make


@pytest.fixture
def client(make_app):
    return TestClient(make_app())


@pytest.fixture
def auth(identity_key):
    """Build Authorization headers for a caller."""
    def _auth(sub="user", wallet=None, admin=False, issued_at=None, key=None):
        token = make_caller_token(
            key or identity_key,
            sub,
            now_epoch() if issued_at is None else issued_at,
            wallet=wallet,
            admin=admin,
        )
        return {"Authorization": f"Bearer {token}"}
    return _auth


@pytest.fixture
def admin_headers(auth):
    return auth("compliance-officer", admin=True)
