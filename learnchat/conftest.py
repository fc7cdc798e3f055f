# learnchat/conftest.py
from datetime import datetime, timezone

import pytest
from sqlalchemy import insert

from learnchat.core.database import access_keys, create_all_tables, get_db_session, init_engine
from learnchat.core.metrics import METRICS
from learnchat.features.llm.client import set_text_generator
from learnchat.features.users.service import create_account, create_organization

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function", autouse=True)
def database(tmp_path):
    """Fresh SQLite file per test."""
    engine = init_engine(f"sqlite:///{tmp_path / 'learnchat.db'}")
    create_all_tables()
    yield engine
    engine.dispose()


@pytest.fixture(scope="function", autouse=True)
def reset_process_state():
    METRICS.reset()
    yield
    set_text_generator(None)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def individual():
    return create_account("alice", user_type="individual", individual_plan="starter")


@pytest.fixture
def free_individual():
    return create_account("frank", user_type="individual", individual_plan="free")


@pytest.fixture
def organization():
    """Business organization with an owner, an admin and two members."""
    org = create_organization("org-1", "Acme School", plan="business")
    owner = create_account("owner-1", user_type="owner", organization_id=org.organization_id)
    admin = create_account("admin-1", user_type="admin", organization_id=org.organization_id)
    member = create_account("member-1", user_type="member", organization_id=org.organization_id)
    keyless = create_account("member-2", user_type="member", organization_id=org.organization_id)
    with get_db_session() as session:
        session.execute(
            insert(access_keys).values(
                key_code="KEY-MEMBER-1",
                user_id=member.user_id,
                organization_id=org.organization_id,
                daily_token_limit=100,
            )
        )
    return {"org": org, "owner": owner, "admin": admin, "member": member, "keyless": keyless}
