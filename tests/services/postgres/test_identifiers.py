# tests/services/postgres/test_identifiers.py

import pytest
from pgnode.services.exceptions import InvalidIdentifierError
from pgnode.services.postgres.identifiers import (
    validate_identifier, validate_password, quote_identifier, quote_catalog_name,
    quote_grantee, password_literal, PUBLIC
)

@pytest.mark.parametrize("value", ["d0123abcd", "_tmp", "a", "a" * 63, "user_1"])
def test_valid_identifiers(value):
    assert validate_identifier(value) == value

@pytest.mark.parametrize("value", [None, "", "A", "9lives", "a-b", 'a"b', "a b", "a" * 64, "é"])
def test_invalid_identifiers(value):
    with pytest.raises(InvalidIdentifierError):
        validate_identifier(value)

def test_invalid_password_does_not_leak_value():
    with pytest.raises(InvalidIdentifierError) as exc_info:
        validate_password("secret'; --")
    assert "secret" not in exc_info.value.message

def test_quote_identifier_always_double_quotes():
    assert quote_identifier("u123") == '"u123"'
    with pytest.raises(InvalidIdentifierError):
        quote_identifier('x"; DROP ROLE postgres; --')

def test_quote_catalog_name_escapes_embedded_quotes():
    assert quote_catalog_name('Weird"Table') == '"Weird""Table"'

def test_quote_grantee_keeps_public_keyword():
    assert quote_grantee(PUBLIC) == "PUBLIC"
    assert quote_grantee("public") == '"public"'

def test_password_literal():
    assert password_literal("p-abc_123") == "'p-abc_123'"
    with pytest.raises(InvalidIdentifierError):
        password_literal("a'b")
