# src/pgnode/services/credentials.py

import uuid
from dataclasses import dataclass
from typing import Optional, Dict, Any
from pgnode.services.postgres.identifiers import validate_identifier, validate_password

def generate_token(prefix: str) -> str:
    """
    "<prefix>-<uuid4>" with every hyphen stripped:
    128 random bits, lowercase hex, always a valid SQL identifier.
    """
    return f"{prefix}-{uuid.uuid4()}".replace("-", "")

def generate_database_name() -> str:
    return generate_token("d")

def generate_user() -> str:
    return generate_token("u")

def generate_password() -> str:
    return generate_token("p")

def generate_sys_user() -> str:
    return generate_token("su")

def generate_sys_password() -> str:
    return generate_token("sp")

@dataclass
class Binding:
    """An application role plus the sys role created alongside it."""
    user: str
    password: str
    sys_user: str
    sys_password: str
    default_user: bool = False

def new_binding(credential: Optional[Dict[str, Any]] = None, default_user: bool = False) -> Binding:
    """
    Caller-supplied user/password are validated and used verbatim,
    otherwise generated. The sys pair is always fresh.
    """
    credential = credential or {}
    user = credential.get("user")
    password = credential.get("password")
    return Binding(
        user=validate_identifier(user, "user") if user is not None else generate_user(),
        password=validate_password(password) if password is not None else generate_password(),
        sys_user=generate_sys_user(),
        sys_password=generate_sys_password(),
        default_user=default_user,
    )

def new_database_name(credential: Optional[Dict[str, Any]] = None) -> str:
    name = (credential or {}).get("name")
    if name is None:
        return generate_database_name()
    return validate_identifier(name, "name")

def gen_credential(name: str, hostname: str, port: int, user: str, password: str) -> Dict[str, Any]:
    # sys_user / sys_password 永远不会出现在这里
    return {
        "name": name,
        "hostname": hostname,
        "port": port,
        "user": user,
        "password": password,
    }
