"""
AWS provider facade.

Where: services/aws_provider/services/provider.py
What: One object per deploy run exposing region/stage/profile resolution,
      credentials, remote requests and function image resolution.
Why: Orchestration code talks to a single entry point while every
     collaborator (registry, runner, environment) stays injectable.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from services.aws_provider.config import ProviderSettings
from services.aws_provider.core.credentials import (
    CredentialCell,
    CredentialResolver,
    EnvironmentSnapshot,
)
from services.aws_provider.core.naming import Naming
from services.aws_provider.core.request_cache import RequestCache
from services.aws_provider.core.retry import RetryPolicy
from services.aws_provider.core.runner import AsyncCommandRunner, CommandRunner
from services.aws_provider.core.utils import first_value, get_values
from services.aws_provider.models import (
    CredentialContext,
    ProviderConfig,
    ResolvedImage,
    ServiceConfig,
)
from services.aws_provider.services.client_registry import Boto3ClientFactory, ClientRegistry
from services.aws_provider.services.image_pipeline import DiagnosticsSink, ImageBuildPipeline
from services.aws_provider.services.image_resolver import ImageResolver
from services.aws_provider.services.request_executor import (
    ACCELERATED_S3_METHODS,
    RequestExecutor,
)

logger = logging.getLogger("aws_provider.provider")

DEFAULT_REGION = "us-east-1"
DEFAULT_STAGE = "dev"
DEFAULT_DEPLOYMENT_PREFIX = "serverless"
ACCELERATE_OPTION = "aws-s3-accelerate"


class AwsProvider:
    """
    Execution layer for one service deployment.

    Args:
        service: resolved service configuration
        options: CLI options (region, stage, profile, aws-profile, aws-s3-accelerate)
        settings: process transport settings; loaded from the environment when omitted
        environment: environment snapshot; captured from os.environ when omitted
        registry: client registry; defaults to boto3-backed clients
        runner: command runner used by the image pipeline
        diagnostics: sink for non-fatal warnings
    """

    def __init__(
        self,
        service: ServiceConfig,
        options: Optional[Mapping[str, Any]] = None,
        *,
        settings: Optional[ProviderSettings] = None,
        environment: Optional[EnvironmentSnapshot] = None,
        registry: Optional[ClientRegistry] = None,
        runner: Optional[CommandRunner] = None,
        diagnostics: Optional[DiagnosticsSink] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.service = service
        self.options: Dict[str, Any] = dict(options or {})
        self.settings = settings or ProviderSettings()
        self.environment = environment or EnvironmentSnapshot.capture()
        self.resolver = CredentialResolver(self.environment)
        self.cell = CredentialCell()
        self.registry = registry or ClientRegistry(
            Boto3ClientFactory(self.settings, self.environment.credentials_file)
        )
        self.executor = RequestExecutor(
            self.registry,
            self.get_credentials,
            self.cell,
            self.get_region,
            retry_policy=retry_policy or RetryPolicy.from_settings(self.settings),
            cache=RequestCache(),
            acceleration_enabled=self.is_s3_transfer_acceleration_enabled,
        )
        self._runner = runner or AsyncCommandRunner()
        self._diagnostics = diagnostics
        self._image_resolver: Optional[ImageResolver] = None

    @property
    def provider(self) -> ProviderConfig:
        return self.service.provider

    @property
    def naming(self) -> Naming:
        return Naming(self.service.service, self.get_stage())

    async def request(
        self,
        service: str,
        method: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        region: Optional[str] = None,
        use_cache: bool = False,
    ) -> Any:
        return await self.executor.request(
            service, method, params, region=region, use_cache=use_cache
        )

    def get_credentials(self) -> CredentialContext:
        """
        Resolve credentials against the current configuration.

        Re-resolved on every call; a session token refreshed by the transport
        is kept as long as the underlying configuration is unchanged.
        """
        resolved = self.resolver.resolve(self.get_stage(), self.options, self.provider)
        return self.cell.sync(resolved)

    def _layers(self) -> Dict[str, Any]:
        return {
            "options": self.options,
            "env": {
                "AWS_REGION": self.environment.value("AWS_REGION"),
                "AWS_DEFAULT_REGION": self.environment.value("AWS_DEFAULT_REGION"),
            },
            "provider": self.provider.model_dump(),
        }

    def _first(self, *paths) -> Optional[Any]:
        entry = first_value(get_values(self._layers(), paths))
        return entry.get("value") if entry else None

    def get_region(self) -> str:
        return (
            self._first(
                ("options", "region"),
                ("env", "AWS_REGION"),
                ("env", "AWS_DEFAULT_REGION"),
                ("provider", "region"),
            )
            or DEFAULT_REGION
        )

    def get_stage(self) -> str:
        return self._first(("options", "stage"), ("provider", "stage")) or DEFAULT_STAGE

    def get_profile(self) -> Optional[str]:
        return self._first(
            ("options", "profile"),
            ("options", "aws-profile"),
            ("provider", "profile"),
        )

    def get_deployment_prefix(self) -> str:
        prefix = self.provider.deployment_prefix
        return DEFAULT_DEPLOYMENT_PREFIX if prefix is None else prefix

    def get_alb_target_group_prefix(self) -> str:
        if self.provider.alb is None:
            return ""
        return self.provider.alb.target_group_prefix or ""

    async def get_account_info(self) -> Dict[str, str]:
        result = await self.request("STS", "getCallerIdentity", use_cache=True)
        return {
            "accountId": result["Account"],
            "partition": result["Arn"].split(":")[1],
        }

    async def get_account_id(self) -> str:
        return (await self.get_account_info())["accountId"]

    async def get_deployment_bucket_name(self) -> str:
        if self.provider.deployment_bucket:
            return self.provider.deployment_bucket

        naming = self.naming
        result = await self.request(
            "CloudFormation",
            "describeStackResource",
            {
                "StackName": naming.get_stack_name(),
                "LogicalResourceId": naming.get_deployment_bucket_logical_id(),
            },
        )
        return result["StackResourceDetail"]["PhysicalResourceId"]

    def is_s3_transfer_acceleration_enabled(self) -> bool:
        return bool(self.options.get(ACCELERATE_OPTION))

    def can_use_s3_transfer_acceleration(self, service: str, method: str) -> bool:
        return (
            self.is_s3_transfer_acceleration_enabled()
            and service == "S3"
            and method in ACCELERATED_S3_METHODS
        )

    @staticmethod
    def enable_s3_transfer_acceleration(context: CredentialContext) -> CredentialContext:
        return context.model_copy(update={"accelerate_endpoint": True})

    def disable_transfer_acceleration_for_current_deploy(self) -> None:
        self.options.pop(ACCELERATE_OPTION, None)

    @property
    def image_resolver(self) -> ImageResolver:
        if self._image_resolver is None:
            service_path = Path(self.service.service_path)
            pipeline = ImageBuildPipeline(
                self.request,
                self._runner,
                self.naming.get_ecr_repository_name(),
                cwd=service_path,
                diagnostics=self._diagnostics,
                docker_bin=self.settings.DOCKER_BIN,
            )
            self._image_resolver = ImageResolver(
                self.provider.images, service_path, self.request, pipeline
            )
        return self._image_resolver

    async def resolve_function_image(
        self, function_name: str, image: Union[str, Mapping[str, Any], None]
    ) -> ResolvedImage:
        """Resolve a function's image to ``(uri, digest)``."""
        resolved = await self.image_resolver.resolve(function_name, image)
        logger.debug(
            f"Function {function_name} uses image {resolved.uri}",
            extra={"logical_id": self.naming.get_lambda_logical_id(function_name)},
        )
        return resolved
