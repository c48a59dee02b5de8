"""
saep_core/config.py — Deployment settings.

Read from environment variables with defaults; validated by Pydantic so a
bad value fails at startup rather than mid-request.

    SAEP_DB_PATH                 SQLite file             ./saep.db
    SAEP_INTEGRITY_POLICY        strict | warn           strict
    SAEP_REVERIFY_ON_REPUBLISH   true | false            false
    SAEP_RSA_KEY_SIZE            bits (>= 2048)          2048
    SAEP_KEYGEN_WORKERS          background keygen pool  2
    SAEP_LOG_LEVEL               logging level name      INFO
    SAEP_LOG_JSON                true | false            true
"""

from __future__ import annotations

import os
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, Field, field_validator


class Settings(BaseModel):
    db_path: str = "./saep.db"

    # Behaviour when decrypted bytes disagree with the stored content hash.
    # strict: raise IntegrityError. warn: return content flagged unverified.
    integrity_policy: Literal["strict", "warn"] = "strict"

    # verify_and_publish on an already-published submission:
    # False → idempotent no-op; True → re-verify the signature every call.
    reverify_on_republish: bool = False

    rsa_key_size: int = Field(default=2048, ge=2048)
    keygen_workers: int = Field(default=2, ge=1)

    log_level: str = "INFO"
    log_json: bool = True

    @field_validator("log_level")
    @classmethod
    def known_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        values = {}
        for field, var in _ENV_VARS.items():
            if var in env:
                values[field] = env[var]
        return cls(**values)


_ENV_VARS = {
    "db_path": "SAEP_DB_PATH",
    "integrity_policy": "SAEP_INTEGRITY_POLICY",
    "reverify_on_republish": "SAEP_REVERIFY_ON_REPUBLISH",
    "rsa_key_size": "SAEP_RSA_KEY_SIZE",
    "keygen_workers": "SAEP_KEYGEN_WORKERS",
    "log_level": "SAEP_LOG_LEVEL",
    "log_json": "SAEP_LOG_JSON",
}
