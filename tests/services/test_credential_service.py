import pytest

from genflow.models.user_credential import UserCredential
from genflow.services.credential_service import (
    MISSING_KEY_MESSAGE,
    UNDECRYPTABLE_KEY_MESSAGE,
    CredentialService,
)
from genflow.services.errors import AuthError


def test_store_and_resolve_roundtrip(db, encryption):
    service = CredentialService(db, encryption)
    service.store_api_key("user_1", "sk-abc")

    stored = db.query(UserCredential).filter_by(user_id="user_1").one()
    assert stored.encrypted_api_key != "sk-abc"
    assert service.resolve_api_key("user_1") == "sk-abc"


def test_store_replaces_existing_key(db, encryption):
    service = CredentialService(db, encryption)
    service.store_api_key("user_1", "sk-old")
    service.store_api_key("user_1", "sk-new")

    assert db.query(UserCredential).count() == 1
    assert service.resolve_api_key("user_1") == "sk-new"


def test_missing_key_raises_auth_error(db, encryption):
    with pytest.raises(AuthError) as exc:
        CredentialService(db, encryption).resolve_api_key("nobody")
    assert str(exc.value) == MISSING_KEY_MESSAGE


def test_undecryptable_key_raises_auth_error(db, encryption):
    db.add(UserCredential(user_id="user_1", encrypted_api_key="garbage"))
    db.commit()

    with pytest.raises(AuthError) as exc:
        CredentialService(db, encryption).resolve_api_key("user_1")
    assert str(exc.value) == UNDECRYPTABLE_KEY_MESSAGE


def test_delete_api_key(db, encryption):
    service = CredentialService(db, encryption)
    service.store_api_key("user_1", "sk-abc")

    assert service.delete_api_key("user_1") is True
    assert service.delete_api_key("user_1") is False
    with pytest.raises(AuthError):
        service.resolve_api_key("user_1")
