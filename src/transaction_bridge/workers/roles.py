"""Role sets and credentials used by multi-actor transactions.

The roles document has two parts:

    {"roles": {"dinas-a": {"bp": "budi", "ppk": "sari", "pa": "agus"}},
     "users": {"budi": {"username": "199001...", "password": "..."}}}

A work item names its role set in ``payload["role"]``; each pipeline phase then
logs in as the user mapped to one role of that set.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from transaction_bridge.errors import ConfigurationError

ROLE_BP = "bp"
ROLE_PPK = "ppk"
ROLE_PA = "pa"
ROLE_PPTK = "pptk"

ROLE_TITLES: dict[str, str] = {
    ROLE_BP: "Bendahara Pengeluaran",
    ROLE_PPK: "PPK SKPD",
    ROLE_PA: "Pengguna Anggaran",
    ROLE_PPTK: "PPTK",
}


class Credential(BaseModel):
    username: str
    password: str = Field(repr=False)


class RolesDocument(BaseModel):
    roles: dict[str, dict[str, str]] = Field(default_factory=dict)
    users: dict[str, Credential] = Field(default_factory=dict)

    def role_set(self, name: str) -> dict[str, str] | None:
        return self.roles.get(name)

    def credential(self, user: str) -> Credential | None:
        return self.users.get(user)


def load_roles(path: Path) -> RolesDocument:
    if not path.exists():
        return RolesDocument()
    try:
        return RolesDocument.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ConfigurationError(f"Invalid roles file {path}: {e}") from e
