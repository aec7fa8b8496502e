import os
import tempfile
from pathlib import Path

_RUNTIME = Path(tempfile.mkdtemp(prefix="caresync-tests-"))
os.environ.setdefault("JWKS_PATH", str(_RUNTIME / "dev-jwks.json"))
os.environ.setdefault("AUDIT_WORM_DIR", str(_RUNTIME / "audit"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from caresync.api.deps import get_abac_evaluator  # noqa: E402
from caresync.core.abac import ABACEvaluator  # noqa: E402
from caresync.core.catalog import RoleCatalog, load_catalog  # noqa: E402
from caresync.core.config import DEFAULT_POLICY_PATH, get_settings  # noqa: E402
from caresync.core.security import issue_caller_jwt  # noqa: E402
from caresync.main import app  # noqa: E402


class RecordingSink:
    """Audit double that keeps emitted events in memory."""

    def __init__(self, fail: bool = False):
        self.events = []
        self.fail = fail

    async def emit(self, event: dict) -> str:
        if self.fail:
            raise OSError("audit store unavailable")
        self.events.append(event)
        return f"hash-{len(self.events)}"


@pytest.fixture(scope="session")
def settings():
    return get_settings()


@pytest.fixture(scope="session")
def catalog() -> RoleCatalog:
    return load_catalog(DEFAULT_POLICY_PATH)


@pytest.fixture
def fixture_catalog() -> RoleCatalog:
    return RoleCatalog.from_dict(
        {
            "roles": {
                "super_admin": {"level": 100, "permissions": ["staff:*", "patient:*"]},
                "admin": {"level": 80, "permissions": ["staff:read", "staff:manage"]},
                "doctor": {"level": 70, "permissions": ["patient:read", "patient:write"]},
                "patient": {"level": 10, "permissions": ["portal:access"]},
            },
            "hierarchy": {
                "admin_panel_roles": ["super_admin", "admin"],
                "hospital_wide_roles": ["super_admin"],
                "manage_all_roles": ["super_admin"],
                "strict_access_roles": ["super_admin"],
                "exclusions": [{"manager": "super_admin", "target": "patient"}],
            },
            "capabilities": {"can_manage_staff": "staff:manage"},
            "navigation": {"/patients": "patient:read"},
            "routes": {"/admin/dashboard": ["super_admin", "admin"]},
        }
    )


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def failing_sink() -> RecordingSink:
    return RecordingSink(fail=True)


@pytest.fixture
def evaluator(catalog, sink) -> ABACEvaluator:
    return ABACEvaluator(catalog, audit_sink=sink, business_hours=(6, 18))


@pytest.fixture
def client(evaluator):
    app.dependency_overrides[get_abac_evaluator] = lambda: evaluator
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def make_caller_jwt(sub="user-1", roles=None, **claims):
    return issue_caller_jwt(sub, roles or [], **claims)


@pytest.fixture
def auth_header():
    def _header(sub="user-1", roles=None, **claims):
        return {"Authorization": f"Bearer {make_caller_jwt(sub, roles, **claims)}"}

    return _header
