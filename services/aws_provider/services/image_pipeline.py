"""
Image Build Pipeline

Where: services/aws_provider/services/image_pipeline.py
What: Drive the docker CLI through version check -> ensure ECR repository ->
      build -> tag -> push, logging in and pushing once more when the push
      fails for authentication reasons.
Why: The substrings matched in docker's output are the contract with the
     external tool, so they live in one ordered rule table.
"""

import asyncio
import base64
import logging
import re
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Protocol, Tuple

from services.aws_provider.core.runner import CommandRunner, RunnerError
from services.aws_provider.exceptions import DockerCommandError, ErrorKind, RemoteCallError
from services.aws_provider.models import BuildTarget, Repository, ResolvedImage

logger = logging.getLogger("aws_provider.image_pipeline")

Request = Callable[..., Awaitable[Any]]

DIGEST_PATTERN = re.compile(r"digest: (sha256:[a-f0-9]{64})")
REPOSITORY_NOT_FOUND = "RepositoryNotFoundException"
UNENCRYPTED_MARKER = "password will be stored unencrypted"
UNENCRYPTED_WARNING = "WARNING: Docker authentication token will be stored unencrypted in docker config."


class RecoveryAction(str, Enum):
    LOGIN = "login"


# Evaluated in order against the output of a failed push.
PUSH_RECOVERY_RULES: Tuple[Tuple[str, RecoveryAction], ...] = (
    ("no basic auth credentials", RecoveryAction.LOGIN),
    ("authorization token has expired", RecoveryAction.LOGIN),
)


def match_recovery(output: str) -> Optional[RecoveryAction]:
    for marker, action in PUSH_RECOVERY_RULES:
        if marker in output:
            return action
    return None


def parse_digest(output: str) -> Optional[str]:
    match = DIGEST_PATTERN.search(output or "")
    return match.group(1) if match else None


class DiagnosticsSink(Protocol):
    def warning(self, message: str) -> None: ...


class LoggingDiagnostics:
    """Diagnostics sink writing to the pipeline logger."""

    def warning(self, message: str) -> None:
        logger.warning(message)


class ImageBuildPipeline:
    """
    Build and push images into the service's ECR repository.

    Steps of one image run strictly one after another; several images may
    run concurrently and share a single repository lookup.
    """

    def __init__(
        self,
        request: Request,
        runner: CommandRunner,
        repository_name: str,
        *,
        cwd: Optional[Path] = None,
        diagnostics: Optional[DiagnosticsSink] = None,
        docker_bin: str = "docker",
    ):
        self._request = request
        self.runner = runner
        self.repository_name = repository_name
        self.cwd = cwd
        self.diagnostics = diagnostics or LoggingDiagnostics()
        self.docker_bin = docker_bin
        self._repository: Optional[asyncio.Task] = None

    async def build_and_push(self, target: BuildTarget) -> ResolvedImage:
        await self.check_tool_available()
        repository = await self.ensure_repository()

        local_tag = f"{self.repository_name}:{target.image_name}"
        remote_tag = f"{repository.uri}:{target.image_name}"

        await self._step(
            ErrorKind.DOCKER_BUILD_ERROR,
            f"Failed to build image {target.image_name}",
            ["build", "-t", local_tag, "-f", str(target.dockerfile_path), target.context_path],
        )
        await self._step(
            ErrorKind.DOCKER_TAG_ERROR,
            f"Failed to tag image {local_tag} as {remote_tag}",
            ["tag", local_tag, remote_tag],
        )
        output = await self.push(remote_tag)

        digest = parse_digest(output)
        if digest is None:
            raise DockerCommandError(
                ErrorKind.DOCKER_PUSH_ERROR,
                f"Could not read image digest from push output of {remote_tag}",
                output,
            )
        logger.info(f"Pushed {remote_tag} ({digest})")
        return ResolvedImage(uri=f"{repository.uri}@{digest}", digest=digest)

    async def check_tool_available(self) -> None:
        await self._step(
            ErrorKind.DOCKER_COMMAND_NOT_AVAILABLE,
            "Could not find Docker installation. Ensure Docker is installed before proceeding",
            ["--version"],
        )

    async def ensure_repository(self) -> Repository:
        # One lookup (and at most one create) per pipeline, even for concurrent images.
        if self._repository is None:
            self._repository = asyncio.ensure_future(self._describe_or_create_repository())
        try:
            return await asyncio.shield(self._repository)
        except Exception:
            if self._repository is not None and self._repository.done():
                self._repository = None
            raise

    async def _describe_or_create_repository(self) -> Repository:
        try:
            result = await self._request(
                "ECR", "describeRepositories", {"repositoryNames": [self.repository_name]}
            )
            uri = result["repositories"][0]["repositoryUri"]
        except RemoteCallError as e:
            if e.provider_code != REPOSITORY_NOT_FOUND:
                raise
            logger.info(f"Creating ECR repository {self.repository_name}")
            result = await self._request(
                "ECR", "createRepository", {"repositoryName": self.repository_name}
            )
            uri = result["repository"]["repositoryUri"]
        return Repository(name=self.repository_name, uri=uri)

    async def push(self, remote_tag: str) -> str:
        try:
            return (await self.runner.run([self.docker_bin, "push", remote_tag], cwd=self.cwd)).stdout
        except RunnerError as e:
            if match_recovery(e.output) is not RecoveryAction.LOGIN:
                raise DockerCommandError(
                    ErrorKind.DOCKER_PUSH_ERROR, f"Failed to push image {remote_tag}", e.output
                ) from e
            logger.info(f"Push of {remote_tag} was rejected for authentication, logging in")

        await self.login()
        return await self._step(
            ErrorKind.DOCKER_PUSH_ERROR,
            f"Failed to push image {remote_tag}",
            ["push", remote_tag],
        )

    async def login(self) -> None:
        result = await self._request("ECR", "getAuthorizationToken")
        auth = result["authorizationData"][0]
        decoded = base64.b64decode(auth["authorizationToken"]).decode("utf-8")
        _, _, password = decoded.partition(":")
        endpoint = auth["proxyEndpoint"]

        output = await self._step(
            ErrorKind.DOCKER_LOGIN_ERROR,
            f"Failed to log in to {endpoint}",
            ["login", "--username", "AWS", "--password-stdin", endpoint],
            input=password,
        )
        if UNENCRYPTED_MARKER in output:
            self.diagnostics.warning(UNENCRYPTED_WARNING)

    async def _step(
        self, kind: ErrorKind, message: str, args: list, input: Optional[str] = None
    ) -> str:
        cmd = [self.docker_bin, *args]
        try:
            completed = await self.runner.run(cmd, input=input, cwd=self.cwd)
        except RunnerError as e:
            raise DockerCommandError(kind, message, e.output) from e
        return completed.stdout
