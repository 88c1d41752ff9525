"""
Provider configuration definition.

Loads transport settings (proxy, CA certificates, timeouts, debug switch,
retry budget) from environment variables via pydantic-settings.
Credential resolution does not use this model; it reads an
EnvironmentSnapshot instead (see core/credentials.py).
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from botocore.config import Config
from pydantic import AliasChoices, Field, PrivateAttr

from services.common.core.config import BaseAppConfig

logger = logging.getLogger("aws_provider.config")

DEFAULT_LOG_CONFIG_PATH = str(Path(__file__).resolve().parent / "logging.yml")


class ProviderSettings(BaseAppConfig):
    """
    Configuration management for the AWS provider layer.
    """

    # Transport
    proxy: str = Field(
        default="",
        validation_alias=AliasChoices("proxy", "HTTPS_PROXY", "https_proxy", "HTTP_PROXY", "http_proxy"),
        description="Proxy URL for all AWS calls",
    )
    ca: str = Field(default="", description="Inline PEM certificate(s), comma separated")
    cafile: str = Field(default="", description="CA certificate file path(s), comma separated")
    AWS_CLIENT_TIMEOUT: Optional[int] = Field(
        default=None, ge=0, description="Client socket timeout (milliseconds)"
    )
    AWS_PROVIDER_DEBUG: bool = Field(default=False, description="Enable SDK debug logging")

    # Retry policy for throttled calls
    REQUEST_MAX_ATTEMPTS: int = Field(default=4, ge=1, description="Attempts per call")
    REQUEST_BACKOFF_BASE: float = Field(default=5.0, ge=0, description="First backoff (seconds)")
    REQUEST_BACKOFF_CAP: float = Field(default=30.0, ge=0, description="Backoff ceiling (seconds)")

    # Container toolchain
    DOCKER_BIN: str = Field(default="docker", description="Container CLI executable")

    _ca_bundle_path: Optional[str] = PrivateAttr(default=None)

    def log_config_path(self) -> str:
        return self.LOG_CONFIG_PATH or DEFAULT_LOG_CONFIG_PATH

    def client_config(self) -> Config:
        """
        Base botocore Config shared by every client.

        SDK-internal retries are disabled; throttling is retried by the
        request executor so attempts stay observable.
        """
        kwargs = {"retries": {"mode": "standard", "total_max_attempts": 1}}
        if self.proxy:
            kwargs["proxies"] = {"http": self.proxy, "https": self.proxy}
        if self.AWS_CLIENT_TIMEOUT is not None:
            seconds = self.AWS_CLIENT_TIMEOUT / 1000
            kwargs["connect_timeout"] = seconds
            kwargs["read_timeout"] = seconds
        return Config(**kwargs)

    def certificates(self) -> List[str]:
        """Collect PEM blocks from the inline ``ca`` value and ``cafile`` paths."""
        certs: List[str] = []
        for cert in self.ca.split(","):
            if cert.strip():
                certs.append(cert.strip())
        for path in self.cafile.split(","):
            if path.strip():
                certs.append(Path(path.strip()).read_text(encoding="utf-8").strip())
        return certs

    def ca_bundle(self) -> Optional[str]:
        """
        Path of a CA bundle usable as ``verify=`` for boto3 clients.

        A single cafile is used as-is; anything else is concatenated into a
        bundle file written once per settings instance.
        """
        if self._ca_bundle_path is not None:
            return self._ca_bundle_path

        files = [p.strip() for p in self.cafile.split(",") if p.strip()]
        if not self.ca.strip() and len(files) == 1:
            self._ca_bundle_path = files[0]
            return self._ca_bundle_path

        certs = self.certificates()
        if not certs:
            return None

        fd, path = tempfile.mkstemp(prefix="aws-provider-ca-", suffix=".pem")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write("\n".join(certs) + "\n")
        logger.debug(f"CA bundle written: {path} ({len(certs)} certificates)")
        self._ca_bundle_path = path
        return path
