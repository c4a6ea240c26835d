"""Secret codec tests — generation, hashing, format, comparison."""

import hashlib

import pytest

from tollgate.auth import codec


def test_generated_secret_has_expected_shape():
    g = codec.generate("live")
    assert g.secret.startswith("tg_live_")
    assert len(g.secret) == len("tg_live_") + 48
    assert codec.validate_format(g.secret)
    assert g.prefix == g.secret[:12]
    assert g.hash == hashlib.sha256(g.secret.encode()).hexdigest()


def test_test_keys_use_test_namespace():
    g = codec.generate("test")
    assert g.secret.startswith("tg_test_")
    assert codec.validate_format(g.secret)


def test_unknown_kind_rejected():
    with pytest.raises(ValueError):
        codec.generate("staging")


def test_secrets_are_unique():
    secrets = {codec.generate().secret for _ in range(50)}
    assert len(secrets) == 50


def test_hash_is_deterministic():
    secret = codec.generate().secret
    assert codec.hash_secret(secret) == codec.hash_secret(secret)
    assert len(codec.hash_secret(secret)) == 64


def test_single_character_change_changes_hash():
    secret = codec.generate().secret
    last = secret[-1]
    flipped = secret[:-1] + ("0" if last != "0" else "1")
    a, b = codec.hash_secret(secret), codec.hash_secret(flipped)
    assert a != b
    # Avalanche: far more than a handful of hex digits differ
    assert sum(x != y for x, y in zip(a, b)) > 32


def test_repr_never_shows_secret():
    g = codec.generate()
    assert g.secret not in repr(g)
    assert g.prefix in repr(g)


@pytest.mark.parametrize(
    "value",
    [
        "",
        "tg_live_",
        "tg_prod_" + "a" * 48,
        "tg_live_" + "A" * 48,          # uppercase hex
        "tg_live_" + "a" * 47,
        "tg_live_" + "a" * 49,
        "tg_live_" + "g" * 48,          # not hex
        "sk_live_" + "a" * 48,
        " tg_live_" + "a" * 48,
        "tg_live_" + "a" * 48 + "\n",   # trailing newline
    ],
)
def test_validate_format_rejects(value):
    assert not codec.validate_format(value)


def test_looks_like_credential_routes_on_prefix_only():
    assert codec.looks_like_credential("tg_live_short")
    assert codec.looks_like_credential("tg_anything")
    assert not codec.looks_like_credential("eyJhbGciOiJIUzI1NiJ9.payload.sig")


def test_constant_time_equals():
    assert codec.constant_time_equals("secret-value", "secret-value")
    assert not codec.constant_time_equals("secret-value", "secret-valuX")
    assert not codec.constant_time_equals("short", "much-longer-value")
    assert not codec.constant_time_equals("", "x")
