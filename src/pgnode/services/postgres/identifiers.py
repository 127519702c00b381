# src/pgnode/services/postgres/identifiers.py

import re
from sqlalchemy.dialects import postgresql
from pgnode.services.exceptions import InvalidIdentifierError

IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")
PASSWORD_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")

# 特殊的授权对象, 不能加引号
PUBLIC = "PUBLIC"

_preparer = postgresql.dialect().identifier_preparer

def validate_identifier(value, field: str = "identifier") -> str:
    if not isinstance(value, str) or not IDENTIFIER_RE.fullmatch(value):
        raise InvalidIdentifierError(f"{field}={value!r}")
    return value

def validate_password(value) -> str:
    if not isinstance(value, str) or not PASSWORD_RE.fullmatch(value):
        # 不回显密码内容
        raise InvalidIdentifierError("password")
    return value

def quote_identifier(value: str) -> str:
    """Validates and double-quotes a name that is spliced into DDL."""
    return _preparer.quote_identifier(validate_identifier(value))

def quote_catalog_name(value: str) -> str:
    """Quotes a name read back from the server catalog (tables, sequences)."""
    return _preparer.quote_identifier(value)

def quote_grantee(role: str) -> str:
    if role == PUBLIC:
        return PUBLIC
    return quote_identifier(role)

def password_literal(value: str) -> str:
    # 已经通过白名单校验, 这里的转义只是保证字面量本身合法
    return "'" + validate_password(value).replace("'", "''") + "'"
