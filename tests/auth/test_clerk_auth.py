import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from genflow.auth import clerk as clerk_auth


def bearer(token="token"):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


@pytest.mark.anyio
async def test_get_current_user_id_success(monkeypatch):
    monkeypatch.setattr(
        "jose.jwt.decode",
        lambda *_args, **_kwargs: {"sub": "user-1"},
    )

    user_id = await clerk_auth.get_current_user_id(bearer())

    assert user_id == "user-1"


@pytest.mark.anyio
async def test_get_current_user_id_missing_sub(monkeypatch):
    monkeypatch.setattr(
        "jose.jwt.decode",
        lambda *_args, **_kwargs: {},
    )

    with pytest.raises(HTTPException) as exc:
        await clerk_auth.get_current_user_id(bearer())

    assert exc.value.status_code == 401


@pytest.mark.anyio
async def test_get_current_user_id_decode_error(monkeypatch):
    def _raise(*_args, **_kwargs):
        raise Exception("bad token")

    monkeypatch.setattr("jose.jwt.decode", _raise)

    with pytest.raises(HTTPException) as exc:
        await clerk_auth.get_current_user_id(bearer())

    assert exc.value.status_code == 401


@pytest.mark.anyio
async def test_get_optional_user_id_anonymous():
    assert await clerk_auth.get_optional_user_id(None) is None


@pytest.mark.anyio
async def test_get_optional_user_id_with_token(monkeypatch):
    monkeypatch.setattr(
        "jose.jwt.decode",
        lambda *_args, **_kwargs: {"sub": "user-2"},
    )

    assert await clerk_auth.get_optional_user_id(bearer()) == "user-2"
