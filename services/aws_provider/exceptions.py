"""
Custom exception classes.

Every fatal condition raised by the provider layer carries a stable
``code`` (an ErrorKind value) and a human-readable message.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    INVALID_PROFILE = "INVALID_PROFILE"
    MISSING_CREDENTIALS = "MISSING_CREDENTIALS"
    THROTTLED = "THROTTLED"
    REMOTE_CALL_FAILED = "REMOTE_CALL_FAILED"
    UNKNOWN_SERVICE = "UNKNOWN_SERVICE"
    IMAGE_BOTH_URI_AND_PATH = "IMAGE_BOTH_URI_AND_PATH"
    IMAGE_NEITHER_URI_NOR_PATH = "IMAGE_NEITHER_URI_NOR_PATH"
    IMAGE_BOTH_URI_AND_NAME = "IMAGE_BOTH_URI_AND_NAME"
    IMAGE_NEITHER_URI_NOR_NAME = "IMAGE_NEITHER_URI_NOR_NAME"
    IMAGE_REFERENCE_UNDEFINED = "IMAGE_REFERENCE_UNDEFINED"
    DOCKERFILE_NOT_AVAILABLE = "DOCKERFILE_NOT_AVAILABLE"
    DOCKER_COMMAND_NOT_AVAILABLE = "DOCKER_COMMAND_NOT_AVAILABLE"
    DOCKER_BUILD_ERROR = "DOCKER_BUILD_ERROR"
    DOCKER_TAG_ERROR = "DOCKER_TAG_ERROR"
    DOCKER_PUSH_ERROR = "DOCKER_PUSH_ERROR"
    DOCKER_LOGIN_ERROR = "DOCKER_LOGIN_ERROR"


class ProviderError(Exception):
    """Base exception class for the provider layer."""

    def __init__(self, code: ErrorKind, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class InvalidProfileError(ProviderError):
    """Raised when a named profile is absent from the shared credentials file."""

    def __init__(self, profile: str, credentials_file: str):
        self.profile = profile
        self.credentials_file = credentials_file
        super().__init__(
            ErrorKind.INVALID_PROFILE,
            f'AWS profile "{profile}" doesn\'t seem to be configured in {credentials_file}',
        )


class UnknownServiceError(ProviderError):
    """Raised when a service identifier has no registered client factory."""

    def __init__(self, service: str):
        self.service = service
        super().__init__(ErrorKind.UNKNOWN_SERVICE, f"Unknown AWS service: {service}")


class RemoteCallError(ProviderError):
    """Raised when a remote API call fails (after retries, where applicable)."""

    def __init__(
        self,
        code: ErrorKind,
        message: str,
        *,
        status_code: Optional[int] = None,
        provider_code: Optional[str] = None,
    ):
        self.status_code = status_code
        self.provider_code = provider_code
        super().__init__(code, message)


class ImageConfigurationError(ProviderError):
    """Raised when a function or provider image definition is invalid."""

    def __init__(self, code: ErrorKind, image: str, message: str):
        self.image = image
        super().__init__(code, message)


class DockerfileNotAvailableError(ProviderError):
    """Raised when the Dockerfile of a path-based image cannot be found."""

    def __init__(self, dockerfile: str):
        self.dockerfile = dockerfile
        super().__init__(
            ErrorKind.DOCKERFILE_NOT_AVAILABLE,
            f'Cannot access Dockerfile "{dockerfile}". Make sure it exists and is readable.',
        )


class DockerCommandError(ProviderError):
    """Raised when a docker pipeline step fails."""

    def __init__(self, code: ErrorKind, message: str, output: str = ""):
        self.output = output
        detail = f"\n{output.strip()}" if output and output.strip() else ""
        super().__init__(code, f"{message}{detail}")
