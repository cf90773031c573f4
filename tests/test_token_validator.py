import logging
import uuid
from datetime import timedelta

import pytest

from personal_tokens.core.clock import as_utc
from personal_tokens.core.errors import (
    AlreadyUsedError,
    DecodeError,
    ExpiredTokenError,
    SecretMismatchError,
    TokenNotFoundError,
    TypeMismatchError,
)
from personal_tokens.models.personal_token import PersonalToken
from personal_tokens.services.personal_tokens import (
    create_personal_token,
    purge_expired_personal_tokens,
    redeem_personal_token,
    validate_personal_token,
)


def test_returns_record_when_valid_without_type_check(make_token, validator):
    record, opaque = make_token()

    result = validator.validate(opaque)
    assert isinstance(result, PersonalToken)
    assert result.id == record.id


def test_returns_record_when_type_matches(make_token, validator):
    record, opaque = make_token(type="type-1")

    assert validator.validate(opaque, "type-1").id == record.id


def test_none_type_is_a_wildcard(make_token, validator):
    record, opaque = make_token(type="type-1")

    assert validator.validate(opaque, None).id == record.id


def test_empty_string_type_matches_empty_string(make_token, validator):
    record, opaque = make_token(type="")

    assert validator.validate(opaque, "").id == record.id
    assert validator.validate(opaque, "type-1") is None


def test_type_mismatch_is_invalid(make_token, validator):
    _, opaque = make_token(type="type-1")

    assert validator.validate(opaque, "type-2") is None
    with pytest.raises(TypeMismatchError):
        validator.check(opaque, "type-2")


def test_issue_then_validate_by_type(issuer, validator):
    opaque = issuer.create("invite_user")

    assert validator.validate(opaque, "new_device") is None
    assert validator.validate(opaque, "invite_user") is not None
    assert validator.validate(opaque, None) is not None


def test_token_expires_when_clock_passes_expiry(issuer, validator, clock):
    opaque = issuer.create("invite_user", expires_at=clock() + timedelta(hours=1))

    assert validator.validate(opaque) is not None

    clock.advance(hours=1)
    assert validator.validate(opaque) is None
    with pytest.raises(ExpiredTokenError):
        validator.check(opaque)


def test_expired_token_is_invalid_even_if_type_matches(make_token, validator, clock):
    _, opaque = make_token(type="type-1", expires_at=clock() - timedelta(hours=1))

    assert validator.validate(opaque, "type-1") is None


def test_used_token_is_invalid(make_token, validator, clock):
    _, opaque = make_token(used_at=clock())

    assert validator.validate(opaque) is None
    with pytest.raises(AlreadyUsedError):
        validator.check(opaque)


def test_used_token_is_invalid_even_if_type_matches(make_token, validator, clock):
    _, opaque = make_token(type="type-1", used_at=clock())

    assert validator.validate(opaque, "type-1") is None


def test_marked_used_token_is_invalid_before_expiry(issuer, validator, db_session, clock):
    opaque = issuer.create("invite_user")
    record = validator.validate(opaque)

    record.mark_as_used(db_session, now=clock())

    assert record.is_expired(clock()) is False
    assert validator.validate(opaque) is None


@pytest.mark.parametrize("garbage", ["invalid-token", "", "not|encrypted", "gAAAAABgarbage=="])
def test_garbage_is_invalid_without_raising(validator, garbage):
    assert validator.validate(garbage) is None


@pytest.mark.parametrize("value", [None, 42, ["token"], {"token": "x"}])
def test_non_string_is_invalid(validator, value):
    assert validator.validate(value) is None


def test_check_reports_decode_failure(validator):
    with pytest.raises(DecodeError):
        validator.check("invalid-token")


def test_unknown_id_is_invalid(validator, codec):
    opaque = codec.encode(str(uuid.uuid4()), "some-secret")

    assert validator.validate(opaque) is None
    with pytest.raises(TokenNotFoundError):
        validator.check(opaque)


def test_wrong_secret_is_invalid(make_token, validator, codec):
    record, _ = make_token()
    forged = codec.encode(record.id, "guessed-secret")

    assert validator.validate(forged) is None
    with pytest.raises(SecretMismatchError):
        validator.check(forged)


def test_rejection_reason_is_logged_at_debug(validator, caplog):
    caplog.set_level(logging.DEBUG, logger="personal_tokens.services.token_validator")

    validator.validate("invalid-token")

    assert "reason=decode_failed" in caplog.text


def test_validate_does_not_consume(make_token, validator):
    _, opaque = make_token()

    assert validator.validate(opaque) is not None
    assert validator.validate(opaque) is not None
    assert validator.validate(opaque).used_at is None


def test_consume_is_single_shot(make_token, validator, clock):
    _, opaque = make_token()
    record = validator.validate(opaque)

    assert validator.consume(record) is True
    assert as_utc(record.used_at) == clock()
    assert validator.consume(record) is False
    assert validator.validate(opaque) is None


def test_redeem_succeeds_once(make_token, validator):
    record, opaque = make_token(type="invite_user")

    redeemed = validator.redeem(opaque, "invite_user")
    assert redeemed is not None
    assert redeemed.id == record.id
    assert validator.redeem(opaque, "invite_user") is None


def test_redeem_loses_race_to_concurrent_consumer(make_token, validator, db_session, clock):
    _, opaque = make_token()
    record = validator.validate(opaque)

    # Another request consumes the token between our validate and our consume.
    assert PersonalToken.update_used_at(db_session, record.id, clock()) == 1

    assert validator.consume(record) is False


def test_session_helpers(db_session, token_config, users):
    user_a, _, _ = users

    opaque = create_personal_token(db_session, "password_reset", owner=user_a, config=token_config)

    record = validate_personal_token(db_session, opaque, "password_reset", config=token_config)
    assert record is not None
    assert record.belongs_to_owner(user_a)

    assert redeem_personal_token(db_session, opaque, "password_reset", config=token_config) is not None
    assert redeem_personal_token(db_session, opaque, "password_reset", config=token_config) is None
    assert validate_personal_token(db_session, opaque, config=token_config) is None


def test_purge_removes_only_old_expired_or_used_tokens(db_session, make_token, token_config, clock):
    make_token(expires_at=clock() - timedelta(days=40))
    make_token(used_at=clock() - timedelta(days=35))
    fresh, _ = make_token()
    recently_expired, _ = make_token(expires_at=clock() - timedelta(days=1))

    removed = purge_expired_personal_tokens(db_session, config=token_config)

    assert removed == 2
    remaining = {t.id for t in db_session.query(PersonalToken).all()}
    assert remaining == {fresh.id, recently_expired.id}
