import time

import pytest

import config
from auth import (
    Identity,
    authorize,
    authorize_admin,
    create_access_token,
    hash_password,
    jwt_encode,
    login_user,
    register_user,
    verify_authorization,
    verify_password,
    verify_token,
)
from errors import (
    AuthorizationError,
    InvalidCredentials,
    InvalidPayload,
    InvalidSignature,
    MalformedToken,
    NoToken,
    TokenExpired,
    UserExists,
)
from schemas import LoginRequest, RegisterRequest, Role

from conftest import make_user

USER = {"id": 7, "username": "carol", "email": "carol@example.com", "role": "customer"}


def claims(**overrides):
    now = int(time.time())
    payload = dict(USER, iat=now, exp=now + 3600)
    payload.update(overrides)
    return payload


def test_password_hash_roundtrip():
    hashed = hash_password("Secret1!")
    assert hashed != "Secret1!"
    assert verify_password("Secret1!", hashed)
    assert not verify_password("secret1!", hashed)


def test_verify_password_rejects_non_bcrypt_hash():
    assert not verify_password("x", "")
    assert not verify_password("x", "5e884898da28047151d0e56f8dc629")


def test_valid_token_yields_identity():
    identity = verify_token(create_access_token(USER))
    assert identity == Identity(id=7, username="carol", email="carol@example.com", role=Role.CUSTOMER)
    assert not identity.is_admin


def test_missing_or_non_bearer_header():
    with pytest.raises(NoToken):
        verify_authorization(None)
    with pytest.raises(NoToken):
        verify_authorization("Token abc.def.ghi")


@pytest.mark.parametrize("token", ["short", "onlyone.segmentxxxxxx", "a.b.c.d.eeeeeeeeee", "!!!!.@@@@@.#####"])
def test_malformed_tokens(token):
    with pytest.raises(MalformedToken):
        verify_token(token)


def test_wrong_secret_is_invalid_signature():
    token = jwt_encode(claims(), "another-secret")
    with pytest.raises(InvalidSignature):
        verify_token(token)


def test_tampered_payload_is_invalid_signature():
    header, _, sig = create_access_token(USER).split(".")
    forged = jwt_encode(claims(role="admin"), config.JWT_SECRET).split(".")[1]
    with pytest.raises(InvalidSignature):
        verify_token(f"{header}.{forged}.{sig}")


def test_non_ascii_signature_is_invalid_signature():
    header, payload, _ = create_access_token(USER).split(".")
    with pytest.raises(InvalidSignature):
        verify_token(f"{header}.{payload}.\u00e9\u00e9\u00e9")


def test_expired_token():
    now = time.time()
    token = jwt_encode(claims(iat=int(now) - 120, exp=int(now) - 60), config.JWT_SECRET)
    with pytest.raises(TokenExpired) as exc:
        verify_token(token)
    assert exc.value.message == "Token has expired"


def test_token_older_than_max_age_is_expired_even_with_later_exp():
    issued = 1_700_000_000
    token = jwt_encode(claims(iat=issued, exp=issued + 7 * 24 * 3600), config.JWT_SECRET)
    assert verify_token(token, now=issued + 3600).id == 7
    with pytest.raises(TokenExpired):
        verify_token(token, now=issued + config.TOKEN_MAX_AGE_SECONDS + 1)


@pytest.mark.parametrize("field", ["id", "username", "email", "role"])
def test_missing_claim_is_invalid_payload(field):
    payload = claims()
    del payload[field]
    with pytest.raises(InvalidPayload):
        verify_token(jwt_encode(payload, config.JWT_SECRET))


def test_unknown_role_is_invalid_payload():
    with pytest.raises(InvalidPayload):
        verify_token(jwt_encode(claims(role="superuser"), config.JWT_SECRET))


def test_access_decisions():
    admin = Identity(1, "admin", "admin@example.com", Role.ADMIN)
    user = Identity(2, "user", "user@example.com", Role.USER)

    assert authorize_admin(admin).allowed
    assert authorize(user, "authenticated").allowed

    decision = authorize_admin(user)
    assert not decision.allowed
    assert decision.code == "ADMIN_REQUIRED"
    with pytest.raises(AuthorizationError) as exc:
        decision.enforce()
    assert exc.value.code == "ADMIN_REQUIRED"
    assert not authorize(admin, "nonexistent").allowed


def test_register_creates_customer(store):
    payload = RegisterRequest(username="Dave_1", email="Dave@Example.com", password="Passw0rd!", fullName="Dave D")
    user = register_user(store, payload)
    assert user["username"] == "dave_1"
    assert user["email"] == "dave@example.com"
    assert user["role"] == "customer"
    assert user["passwordHash"] != "Passw0rd!"
    assert store.get("users", user["id"])["username"] == "dave_1"


@pytest.mark.parametrize("username,email", [("newname", "alice@example.com"), ("alice", "fresh@example.com")])
def test_register_duplicate(store, username, email):
    payload = RegisterRequest(username=username, email=email, password="Passw0rd!", fullName="Someone Else")
    with pytest.raises(UserExists):
        register_user(store, payload)


def test_login_returns_token_and_records_last_login(store):
    result = login_user(store, LoginRequest(email="ALICE@example.com", password="Secret1!"))
    identity = verify_token(result["token"])
    assert identity.id == 2
    assert identity.role is Role.CUSTOMER
    assert "passwordHash" not in result["user"]
    assert store.get("users", 2)["lastLogin"] is not None


def test_login_failures_are_indistinguishable(store):
    with pytest.raises(InvalidCredentials) as wrong_password:
        login_user(store, LoginRequest(email="alice@example.com", password="nope"))
    with pytest.raises(InvalidCredentials) as unknown_email:
        login_user(store, LoginRequest(email="ghost@example.com", password="Secret1!"))
    assert wrong_password.value.to_dict() == unknown_email.value.to_dict()


def test_login_deactivated_account(store):
    store.put("users", make_user(9, "frozen", active=False))
    with pytest.raises(AuthorizationError) as exc:
        login_user(store, LoginRequest(email="frozen@example.com", password="Secret1!"))
    assert exc.value.code == "ACCOUNT_DEACTIVATED"
    # a wrong password still reads as bad credentials
    with pytest.raises(InvalidCredentials):
        login_user(store, LoginRequest(email="frozen@example.com", password="wrong"))
