import asyncio
import inspect
import os
import sys
from pathlib import Path

# Environment must be set before any reelscore import reads settings.
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
# An empty URL keeps tests on the in-process cache and mail queue.
os.environ["REDIS_URL"] = ""
os.environ.setdefault("MAIL_WORKER_ENABLED", "false")
os.environ.setdefault("HOUSEKEEPING_ENABLED", "false")
os.environ.setdefault("PASSWORD_HASH_COST", "2")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from reelscore.service.auth import SessionManager  # noqa: E402
from reelscore.service.passwords import PasswordHasher  # noqa: E402
from reelscore.service.runtime import reset_runtime_for_tests  # noqa: E402
from reelscore.service.tokens import TokenIssuer  # noqa: E402
from reelscore.storage.memory import MemoryCache, MemoryMailQueue, MemoryStore  # noqa: E402

TEST_SECRET = os.environ["JWT_SECRET"]


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def mail_queue():
    return MemoryMailQueue()


@pytest.fixture
def hasher():
    return PasswordHasher(2)


@pytest.fixture
def issuer():
    return TokenIssuer(TEST_SECRET, issuer="reelscore", audience="reelscore-clients")


@pytest.fixture
def manager(store, cache, mail_queue, hasher, issuer):
    return SessionManager(store.users, store.sessions, cache, mail_queue, hasher, issuer)


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
