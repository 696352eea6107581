from types import SimpleNamespace

import pytest

from auth import LocalIdentity, SupabaseIdentity, normalize_user
from errors import ExternalServiceError


def test_normalize_user_from_object_and_dict():
    session = SimpleNamespace(access_token="tok")
    user = normalize_user(SimpleNamespace(id="u1", email="a@b.c"), session)
    assert (user.id, user.email, user.access_token) == ("u1", "a@b.c", "tok")
    assert normalize_user({"id": "u2", "email": None}).id == "u2"
    assert normalize_user(None) is None


class FakeAuth:
    def __init__(self, resp=None, error=None):
        self.resp, self.error = resp, error

    def _answer(self, *args):
        if self.error:
            raise self.error
        return self.resp

    sign_in_anonymously = sign_in_with_password = sign_up = sign_out = _answer


def identity(**kwargs):
    return SupabaseIdentity(SimpleNamespace(auth=FakeAuth(**kwargs)))


def test_supabase_sign_in_keeps_user_id():
    resp = SimpleNamespace(user=SimpleNamespace(id="u1", email="a@b.c"), session=None)
    assert identity(resp=resp).sign_in("a@b.c", "pw").id == "u1"


def test_supabase_failures_are_external_errors():
    with pytest.raises(ExternalServiceError):
        identity(error=RuntimeError("bad password")).sign_in("a@b.c", "pw")
    with pytest.raises(ExternalServiceError):
        identity(resp=SimpleNamespace(user=None, session=None)).sign_in_anonymously()


def test_local_identity_is_stable_per_email():
    local = LocalIdentity()
    assert local.sign_in("a@b.c", "x").id == local.sign_up("a@b.c", "y").id
    assert local.sign_in_anonymously().id != local.sign_in_anonymously().id
