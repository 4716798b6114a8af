from werkzeug.security import check_password_hash

from conftest import FakeClient
from reset_password import reset_password


def test_reset_matches_the_login_exactly():
    client = FakeClient(lambda query, params: [{"id": 4}] if "UPDATE users" in query else None)

    assert reset_password(client, " TEA2026001 ", "NEWPASS99") is True

    query, params = client.cursor.executed[0]
    assert "WHERE user_id = %s" in query
    assert "UPPER" not in query
    assert params[1:] == (True, "TEA2026001")
    assert check_password_hash(params[0], "NEWPASS99")
    assert client.commits == 1


def test_unknown_login_is_reported():
    client = FakeClient(lambda query, params: [])
    assert reset_password(client, "tea2026001", "NEWPASS99", must_change=False) is False
