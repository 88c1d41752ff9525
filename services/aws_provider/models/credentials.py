from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class CredentialContext(BaseModel):
    """
    Effective credentials and signing configuration for one resolution.

    Frozen: holders swap whole instances instead of mutating fields, so a
    concurrent reader never sees a half-updated token.
    """

    model_config = ConfigDict(frozen=True)

    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    profile: Optional[str] = None
    role_arn: Optional[str] = None
    source_profile: Optional[str] = None
    signature_version: Optional[str] = None
    accelerate_endpoint: bool = False

    @field_validator(
        "access_key_id",
        "secret_access_key",
        "session_token",
        "profile",
        "role_arn",
        "source_profile",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @property
    def is_empty(self) -> bool:
        return self == CredentialContext()

    @property
    def has_static_keys(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    @property
    def assumes_role(self) -> bool:
        return bool(self.role_arn and self.source_profile)
