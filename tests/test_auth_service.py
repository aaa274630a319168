import pytest

from auth_service import AuthenticationError, SessionContext, login
from models import Permission


def _user(id, email, role, permissions=(), password=None):
    record = {"id": id, "name": "Compte " + id, "email": email, "role": role, "permissions": list(permissions)}
    if password:
        record["password"] = password
    return record


@pytest.fixture
async def service(local_service):
    await local_service.users.save(_user("u1", "admin@cmhe.ma", "Administrateur"))
    await local_service.users.save(_user("u2", "sec@cmhe.ma", "Secrétaire", ["patients"], password="s3cret"))
    return local_service


async def test_login_with_stored_password_is_case_insensitive(service):
    user = await login(service, "  SEC@cmhe.MA ", "s3cret")
    assert user["id"] == "u2"
    assert user["permissions"] == ["patients"]


async def test_role_default_password_only_without_stored_password(service):
    assert (await login(service, "admin@cmhe.ma", "admin123"))["id"] == "u1"
    with pytest.raises(AuthenticationError):
        await login(service, "sec@cmhe.ma", "sec123")


async def test_unknown_email_or_wrong_password(service):
    with pytest.raises(AuthenticationError):
        await login(service, "nobody@cmhe.ma", "admin123")
    with pytest.raises(AuthenticationError):
        await login(service, "admin@cmhe.ma", "wrong")


async def test_admin_login_gets_every_permission(service):
    user = await login(service, "admin@cmhe.ma", "admin123")
    assert set(user["permissions"]) == {p.value for p in Permission}


async def test_session_context(service):
    sessions = SessionContext()
    token, user = await sessions.login(service, "sec@cmhe.ma", "s3cret")
    assert sessions.current_user(token)["id"] == "u2"
    assert sessions.current_user("bogus") is None
    sessions.logout(token)
    assert sessions.current_user(token) is None


async def test_accented_passwords(service):
    await service.users.save(_user("u3", "dr@cmhe.ma", "Médecin", password="médecin2024"))
    assert (await login(service, "dr@cmhe.ma", "médecin2024"))["id"] == "u3"
    with pytest.raises(AuthenticationError):
        await login(service, "dr@cmhe.ma", "passé")
    with pytest.raises(AuthenticationError):
        await login(service, "admin@cmhe.ma", "été")


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def test_sessions_expire(service):
    clock = FakeClock()
    sessions = SessionContext(ttl_seconds=60, clock=clock)
    token, _ = await sessions.login(service, "sec@cmhe.ma", "s3cret")

    clock.now += 59
    assert sessions.current_user(token)["id"] == "u2"
    clock.now += 1
    assert sessions.current_user(token) is None
    assert len(sessions) == 0


async def test_oldest_session_dropped_at_capacity(service):
    sessions = SessionContext(max_sessions=2)
    first, _ = await sessions.login(service, "sec@cmhe.ma", "s3cret")
    second, _ = await sessions.login(service, "admin@cmhe.ma", "admin123")
    third, _ = await sessions.login(service, "sec@cmhe.ma", "s3cret")

    assert len(sessions) == 2
    assert sessions.current_user(first) is None
    assert sessions.current_user(second)["id"] == "u1"
    assert sessions.current_user(third)["id"] == "u2"
