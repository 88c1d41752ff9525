"""
Service configuration models.

The resolved provider block handed over by the configuration loader.
Keys keep their camelCase spelling through aliases so a parsed YAML
document validates directly.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ProviderCredentials(_ConfigModel):
    """Explicit credentials declared on the provider block."""

    access_key_id: Optional[str] = Field(default=None, alias="accessKeyId")
    secret_access_key: Optional[str] = Field(default=None, alias="secretAccessKey")
    session_token: Optional[str] = Field(default=None, alias="sessionToken")

    def is_declared(self) -> bool:
        """True when at least one field is a non-empty string."""
        return any(
            isinstance(value, str) and value.strip() != ""
            for value in (self.access_key_id, self.secret_access_key, self.session_token)
        )


class DeploymentBucketObject(_ConfigModel):
    name: Optional[str] = None
    server_side_encryption: Optional[str] = Field(default=None, alias="serverSideEncryption")


class AlbConfig(_ConfigModel):
    target_group_prefix: Optional[str] = Field(default=None, alias="targetGroupPrefix")


class EcrConfig(_ConfigModel):
    # name -> "path or uri" shorthand, or {path, uri, file}
    images: Dict[str, Union[str, Dict[str, Any]]] = Field(default_factory=dict)


class ProviderConfig(_ConfigModel):
    """Resolved `provider:` block."""

    region: Optional[str] = None
    stage: Optional[str] = None
    profile: Optional[str] = None
    credentials: Optional[ProviderCredentials] = None
    deployment_bucket: Optional[str] = Field(default=None, alias="deploymentBucket")
    deployment_bucket_object: Optional[DeploymentBucketObject] = Field(
        default=None, alias="deploymentBucketObject"
    )
    deployment_prefix: Optional[str] = Field(default=None, alias="deploymentPrefix")
    alb: Optional[AlbConfig] = None
    ecr: Optional[EcrConfig] = None

    @property
    def images(self) -> Dict[str, Union[str, Dict[str, Any]]]:
        return self.ecr.images if self.ecr else {}


class ServiceConfig(_ConfigModel):
    """A service as seen by the provider: its name, location and provider block."""

    service: str
    service_path: Path = Field(default_factory=Path.cwd, alias="servicePath")
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
