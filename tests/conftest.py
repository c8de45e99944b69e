import pytest
from fastapi.testclient import TestClient

from pdpaudit.api import build_runtime, create_app
from pdpaudit.auditor import AuditService
from pdpaudit.binding import AuditLedgerBinding
from pdpaudit.ledger import InMemoryLedger
from pdpaudit.signing import KeyPairSigner, TrustStore
from pdpaudit.storage import InMemoryBlockStore

from support import SMALL_PARAMS, rsa_params


@pytest.fixture
def params():
    return SMALL_PARAMS


@pytest.fixture(scope="session")
def params_2048():
    return rsa_params(2048)


@pytest.fixture
def binding():
    return AuditLedgerBinding(InMemoryLedger())


@pytest.fixture
def service(params, binding):
    return AuditService(params, binding, sample_size=4)


@pytest.fixture
def signer():
    return KeyPairSigner.generate()


@pytest.fixture
def runtime(params, signer):
    return build_runtime(
        params,
        InMemoryLedger(),
        InMemoryBlockStore(),
        signer=signer,
        trust_store=TrustStore(data=signer.trust_store()),
        sample_size=4,
    )


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime))
