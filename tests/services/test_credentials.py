# tests/services/test_credentials.py

import re
import pytest
from pgnode.services.credentials import (
    generate_token, generate_database_name, generate_user, generate_password,
    generate_sys_user, generate_sys_password, new_binding, new_database_name, gen_credential
)
from pgnode.services.exceptions import InvalidIdentifierError
from pgnode.services.postgres.identifiers import IDENTIFIER_RE, PASSWORD_RE

def test_generated_tokens_have_prefix_and_128_bit_hex_body():
    for generator, prefix in (
        (generate_database_name, "d"),
        (generate_user, "u"),
        (generate_password, "p"),
        (generate_sys_user, "su"),
        (generate_sys_password, "sp"),
    ):
        token = generator()
        assert re.fullmatch(prefix + r"[0-9a-f]{32}", token)
        assert "-" not in token

def test_generated_names_are_valid_identifiers_and_passwords():
    assert IDENTIFIER_RE.match(generate_database_name())
    assert IDENTIFIER_RE.match(generate_user())
    assert IDENTIFIER_RE.match(generate_sys_user())
    assert PASSWORD_RE.match(generate_password())
    assert PASSWORD_RE.match(generate_sys_password())

def test_generated_tokens_are_unique():
    tokens = {generate_token("u") for _ in range(1000)}
    assert len(tokens) == 1000

def test_new_binding_generates_everything_by_default():
    binding = new_binding()
    assert binding.user.startswith("u")
    assert binding.password.startswith("p")
    assert binding.sys_user.startswith("su")
    assert binding.sys_password.startswith("sp")
    assert binding.default_user is False

def test_new_binding_keeps_supplied_user_but_always_fresh_sys_pair():
    first = new_binding({"user": "app_user", "password": "pw-1"}, default_user=True)
    second = new_binding({"user": "app_user", "password": "pw-1"})

    assert (first.user, first.password) == ("app_user", "pw-1")
    assert first.default_user is True
    assert first.sys_user != second.sys_user
    assert first.sys_password != second.sys_password

@pytest.mark.parametrize("credential", [
    {"user": "Robert"},
    {"user": "1abc"},
    {"user": "a" * 64},
    {"user": "ok", "password": "it's"},
    {"user": "ok", "password": ""},
])
def test_new_binding_rejects_unsafe_values(credential):
    with pytest.raises(InvalidIdentifierError):
        new_binding(credential)

def test_new_database_name():
    assert new_database_name({"name": "shop"}) == "shop"
    assert new_database_name(None).startswith("d")
    with pytest.raises(InvalidIdentifierError):
        new_database_name({"name": "shop; drop"})

def test_gen_credential_shape():
    assert gen_credential("d1", "10.0.0.5", 5432, "u1", "p1") == {
        "name": "d1", "hostname": "10.0.0.5", "port": 5432, "user": "u1", "password": "p1",
    }
