import asyncio
import inspect
import os
import sys
from pathlib import Path

# Set before importing the package so module-level settings never reach Redis
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("LOG_JSON", "false")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from sessionward.config import reset_settings_cache  # noqa: E402
from sessionward.service.claims import Role  # noqa: E402
from sessionward.service.codec import ClaimsCodec  # noqa: E402
from sessionward.service.issuer import SessionIssuer  # noqa: E402
from sessionward.service.revoker import SessionRevoker  # noqa: E402
from sessionward.service.rotator import SessionRotator  # noqa: E402
from sessionward.service.verifier import SessionVerifier  # noqa: E402
from sessionward.storage.memory import MemoryRevocationStore, MemoryUserStore  # noqa: E402
from sessionward.storage.models import User  # noqa: E402

TEST_SECRET = "unit-test-signing-secret-0123456789abcdef"


@pytest.fixture(autouse=True)
def reset_settings_state():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def codec():
    return ClaimsCodec(TEST_SECRET)


@pytest.fixture
def store():
    return MemoryRevocationStore()


@pytest.fixture
def users():
    directory = MemoryUserStore()
    for user_id, role in (("u1", Role.USER.value), ("admin1", Role.ADMIN.value)):
        directory.users[user_id] = User(
            id=user_id,
            email=f"{user_id}@example.com",
            name=user_id,
            password_hash="unused",
            role=role,
        )
    return directory


@pytest.fixture
def issuer(codec, store):
    return SessionIssuer(codec, store, capability_ttl_seconds=15 * 60)


@pytest.fixture
def verifier(codec, store):
    return SessionVerifier(codec, store)


@pytest.fixture
def rotator(codec, store, users, issuer):
    return SessionRotator(codec, store, users, issuer)


@pytest.fixture
def revoker(codec, store):
    return SessionRevoker(codec, store)


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
