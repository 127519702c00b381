# src/pgnode/schemas/node_schemas.py

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List

class CredentialIn(BaseModel):
    """A credential as handed back by the orchestrator; every field optional."""
    name: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    hostname: Optional[str] = None
    port: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)

class CredentialRead(BaseModel):
    name: str
    hostname: str
    port: int
    user: str
    password: str

class AnnouncementRead(BaseModel):
    available_storage: int = Field(..., description="Remaining capacity of this node, in bytes.")

class ProvisionRequest(BaseModel):
    plan: str = "free"
    credential: Optional[CredentialIn] = None

class UnprovisionRequest(BaseModel):
    name: str
    credentials: List[CredentialIn] = Field(default_factory=list)

class BindRequest(BaseModel):
    name: str
    bind_opts: Dict[str, Any] = Field(default_factory=dict)
    credential: Optional[CredentialIn] = None

class UnbindRequest(BaseModel):
    credential: CredentialIn
