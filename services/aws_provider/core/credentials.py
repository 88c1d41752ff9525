"""
Credential Resolver

Where: services/aws_provider/core/credentials.py
What: Compute the effective CredentialContext from layered sources and hold
      the shared, token-refreshable copy used by every outbound call.
Why: Resolution is a pure function of (options, provider config, environment
     snapshot); only the transport may update the session token afterwards.
"""

import logging
import os
import threading
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional

from botocore.configloader import raw_config_parse

from services.aws_provider.core.utils import is_blank
from services.aws_provider.exceptions import InvalidProfileError
from services.aws_provider.models import CredentialContext, ProviderConfig

logger = logging.getLogger("aws_provider.credentials")

DEFAULT_CREDENTIALS_FILE = "~/.aws/credentials"
KMS_ENCRYPTION = "aws:kms"


class EnvironmentSnapshot(Mapping[str, str]):
    """
    Immutable view of the environment variables captured at one point in time.
    """

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values = MappingProxyType(dict(values or {}))

    @classmethod
    def capture(cls) -> "EnvironmentSnapshot":
        return cls(os.environ)

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def value(self, key: str) -> Optional[str]:
        """Return the variable, treating blank values as unset."""
        value = self._values.get(key)
        return None if is_blank(value) else value

    @property
    def credentials_file(self) -> str:
        path = self.value("AWS_SHARED_CREDENTIALS_FILE") or DEFAULT_CREDENTIALS_FILE
        return str(Path(path).expanduser())


class CredentialResolver:
    """
    Layered credential lookup.

    Precedence (highest first):
        1. provider.credentials with at least one non-empty field
        2. named profile: --aws-profile / --profile option, AWS_<STAGE>_PROFILE,
           AWS_PROFILE, provider.profile (must exist in the credentials file)
        3. AWS_<STAGE>_ACCESS_KEY_ID / _SECRET_ACCESS_KEY / _SESSION_TOKEN
        4. AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY / AWS_SESSION_TOKEN
        5. AWS_DEFAULT_PROFILE, falling back to AWS_PROFILE
        6. the "default" profile, when present
        7. empty context (SDK default chain applies)
    """

    def __init__(self, environment: EnvironmentSnapshot):
        self.environment = environment

    def resolve(
        self,
        stage: str,
        options: Optional[Mapping[str, Any]],
        provider: Optional[ProviderConfig],
    ) -> CredentialContext:
        options = options or {}
        provider = provider or ProviderConfig()

        fields = self._resolve_fields(stage, options, provider)

        bucket = provider.deployment_bucket_object
        if bucket is not None and bucket.server_side_encryption == KMS_ENCRYPTION:
            fields["signature_version"] = "v4"

        return CredentialContext(**fields)

    def _resolve_fields(
        self, stage: str, options: Mapping[str, Any], provider: ProviderConfig
    ) -> Dict[str, Any]:
        declared = provider.credentials
        if declared is not None and declared.is_declared():
            logger.debug("Using credentials declared on the provider block")
            return {
                "access_key_id": declared.access_key_id,
                "secret_access_key": declared.secret_access_key,
                "session_token": declared.session_token,
            }

        stage_prefix = f"AWS_{stage.upper()}" if stage else None
        env = self.environment

        profile = self._first(
            options.get("aws-profile"),
            options.get("profile"),
            env.value(f"{stage_prefix}_PROFILE") if stage_prefix else None,
            env.value("AWS_PROFILE"),
            provider.profile,
        )
        if profile:
            return self._load_profile(profile, required=True)

        if stage_prefix:
            fields = self._env_triple(stage_prefix)
            if fields:
                logger.debug(f"Using {stage_prefix}_* credentials from environment")
                return fields

        fields = self._env_triple("AWS")
        if fields:
            logger.debug("Using AWS_* credentials from environment")
            return fields

        profile = self._first(env.value("AWS_DEFAULT_PROFILE"), env.value("AWS_PROFILE"))
        if profile:
            return self._load_profile(profile, required=True)

        return self._load_profile("default", required=False)

    def _env_triple(self, prefix: str) -> Dict[str, Any]:
        access_key_id = self.environment.value(f"{prefix}_ACCESS_KEY_ID")
        secret_access_key = self.environment.value(f"{prefix}_SECRET_ACCESS_KEY")
        session_token = self.environment.value(f"{prefix}_SESSION_TOKEN")
        if not (access_key_id or secret_access_key or session_token):
            return {}
        return {
            "access_key_id": access_key_id,
            "secret_access_key": secret_access_key,
            "session_token": session_token,
        }

    def _load_profile(self, profile: str, *, required: bool) -> Dict[str, Any]:
        """
        Read one profile section from the shared credentials file.

        Raises:
            InvalidProfileError: ``required`` and the section is absent
        """
        credentials_file = self.environment.credentials_file
        section = self.read_profiles(credentials_file).get(profile)
        if section is None:
            if required:
                raise InvalidProfileError(profile, credentials_file)
            return {}

        if section.get("role_arn") and section.get("source_profile"):
            logger.debug(f"Profile {profile} assumes role {section['role_arn']}")
            return {
                "profile": profile,
                "role_arn": section["role_arn"],
                "source_profile": section["source_profile"],
            }

        logger.debug(f"Using credentials of profile {profile} from {credentials_file}")
        return {
            "profile": profile,
            "access_key_id": section.get("aws_access_key_id"),
            "secret_access_key": section.get("aws_secret_access_key"),
            "session_token": section.get("aws_session_token"),
        }

    @staticmethod
    def read_profiles(credentials_file: str) -> Dict[str, Dict[str, str]]:
        if not os.path.isfile(credentials_file):
            return {}
        return raw_config_parse(credentials_file, parse_subsections=False)

    @staticmethod
    def _first(*values: Any) -> Optional[str]:
        for value in values:
            if not is_blank(value):
                return value
        return None


class CredentialCell:
    """
    Shared credential context of one provider instance.

    Readers always get a whole frozen context. The transport may only swap in
    a refreshed session token; everything else changes through ``sync``.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._base: Optional[CredentialContext] = None
        self._current: Optional[CredentialContext] = None

    def sync(self, resolved: CredentialContext) -> CredentialContext:
        """
        Re-base on a fresh resolution when configuration changed; otherwise
        keep the current value, which may carry a refreshed token.
        """
        with self._lock:
            if self._base != resolved:
                self._base = resolved
                self._current = resolved
            return self._current

    def get(self) -> Optional[CredentialContext]:
        with self._lock:
            return self._current

    def update_session_token(self, token: Optional[str]) -> None:
        if is_blank(token):
            return
        with self._lock:
            if self._current is not None and self._current.session_token != token:
                self._current = self._current.model_copy(update={"session_token": token})
                logger.debug("Session token refreshed by transport")
