"""
Client Registry

Where: services/aws_provider/services/client_registry.py
What: Map service identifiers ("S3", "CloudFormation", "DynamoDB.DocumentClient", ...)
      to boto3 clients/resources built from a CredentialContext.
Why: Unknown identifiers must fail before any network activity, and the
     transport needs a narrow hook to publish refreshed session tokens.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

import boto3
import botocore.session
from botocore import xform_name
from botocore.config import Config

from services.aws_provider.config import ProviderSettings
from services.aws_provider.exceptions import UnknownServiceError
from services.aws_provider.models import CredentialContext

logger = logging.getLogger("aws_provider.client_registry")

TokenSink = Callable[[Optional[str]], None]


@dataclass(frozen=True)
class ServiceSpec:
    """
    How one service identifier is constructed and invoked.

    ``kind`` is "client" for low-level clients and "document" for the
    table-oriented DynamoDB resource.
    """

    identifier: str
    boto_name: str
    kind: str = "client"
    method_aliases: Mapping[str, str] = field(default_factory=dict)

    def operation_name(self, method: str) -> str:
        return self.method_aliases.get(method) or xform_name(method)

    def invoke(self, client: Any, method: str, params: Optional[Mapping[str, Any]]) -> Any:
        kwargs = dict(params or {})
        if self.kind == "document" and "TableName" in kwargs and method in DOCUMENT_TABLE_METHODS:
            table = client.Table(kwargs.pop("TableName"))
            return getattr(table, DOCUMENT_TABLE_METHODS[method])(**kwargs)
        return getattr(client, self.operation_name(method))(**kwargs)


DOCUMENT_TABLE_METHODS = {
    "get": "get_item",
    "put": "put_item",
    "update": "update_item",
    "delete": "delete_item",
    "query": "query",
    "scan": "scan",
}

DEFAULT_SERVICES: Dict[str, ServiceSpec] = {
    spec.identifier: spec
    for spec in (
        ServiceSpec("S3", "s3", method_aliases={"upload": "put_object"}),
        ServiceSpec("CloudFormation", "cloudformation"),
        ServiceSpec("ECR", "ecr"),
        ServiceSpec("STS", "sts"),
        ServiceSpec("Lambda", "lambda"),
        ServiceSpec("IAM", "iam"),
        ServiceSpec("APIGateway", "apigateway"),
        ServiceSpec("ApiGatewayV2", "apigatewayv2"),
        ServiceSpec("CloudWatch", "cloudwatch"),
        ServiceSpec("CloudWatchLogs", "logs"),
        ServiceSpec("CloudWatchEvents", "events"),
        ServiceSpec("EventBridge", "events"),
        ServiceSpec("DynamoDB", "dynamodb"),
        ServiceSpec("DynamoDB.DocumentClient", "dynamodb", kind="document"),
        ServiceSpec("SNS", "sns"),
        ServiceSpec("SQS", "sqs"),
        ServiceSpec("Kinesis", "kinesis"),
        ServiceSpec("SSM", "ssm"),
        ServiceSpec("KMS", "kms"),
        ServiceSpec("SecretsManager", "secretsmanager"),
        ServiceSpec("Route53", "route53"),
        ServiceSpec("ACM", "acm"),
        ServiceSpec("CognitoIdentityServiceProvider", "cognito-idp"),
    )
}


class ClientFactory(Protocol):
    def __call__(
        self,
        spec: ServiceSpec,
        context: CredentialContext,
        region: Optional[str],
        token_sink: TokenSink,
    ) -> Any: ...


class Boto3ClientFactory:
    """
    Build boto3 clients/resources from a CredentialContext.

    Static keys are passed directly; role profiles go through a botocore
    session pointed at the configured credentials file so the SDK performs
    the role chaining; an empty context leaves the SDK default chain in charge.
    """

    def __init__(self, settings: ProviderSettings, credentials_file: Optional[str] = None):
        self.settings = settings
        self.credentials_file = credentials_file

    def session(self, context: CredentialContext, region: Optional[str]) -> boto3.Session:
        if context.has_static_keys:
            return boto3.Session(
                aws_access_key_id=context.access_key_id,
                aws_secret_access_key=context.secret_access_key,
                aws_session_token=context.session_token,
                region_name=region,
            )

        if context.profile:
            core = botocore.session.Session()
            if self.credentials_file:
                core.set_config_variable("credentials_file", self.credentials_file)
            return boto3.Session(botocore_session=core, profile_name=context.profile, region_name=region)

        return boto3.Session(region_name=region)

    def client_config(self, context: CredentialContext) -> Config:
        config = self.settings.client_config()
        overrides = {}
        if context.signature_version == "v4":
            overrides["signature_version"] = "s3v4"
        if context.accelerate_endpoint:
            overrides["s3"] = {"use_accelerate_endpoint": True}
        if overrides:
            config = config.merge(Config(**overrides))
        return config

    def __call__(
        self,
        spec: ServiceSpec,
        context: CredentialContext,
        region: Optional[str],
        token_sink: TokenSink,
    ) -> Any:
        session = self.session(context, region)
        kwargs = {"config": self.client_config(context)}
        verify = self.settings.ca_bundle()
        if verify:
            kwargs["verify"] = verify

        if spec.kind == "document":
            resource = session.resource(spec.boto_name, **kwargs)
            events = resource.meta.client.meta.events
            target = resource
        else:
            target = session.client(spec.boto_name, **kwargs)
            events = target.meta.events

        def publish_token(**_kwargs):
            credentials = session.get_credentials()
            if credentials is not None:
                token_sink(credentials.get_frozen_credentials().token)

        events.register(f"after-call.{events_service_id(target, spec)}", publish_token)
        return target


def events_service_id(target: Any, spec: ServiceSpec) -> str:
    client = target.meta.client if spec.kind == "document" else target
    return client.meta.service_model.service_id.hyphenize()


class ClientRegistry:
    """Capability lookup from service identifier to client constructor."""

    def __init__(
        self,
        factory: ClientFactory,
        services: Optional[Mapping[str, ServiceSpec]] = None,
    ):
        self.factory = factory
        self.services = dict(services if services is not None else DEFAULT_SERVICES)

    def register(self, spec: ServiceSpec) -> None:
        self.services[spec.identifier] = spec

    def resolve(self, service: str) -> ServiceSpec:
        spec = self.services.get(service)
        if spec is None:
            raise UnknownServiceError(service)
        return spec

    def create(
        self,
        service: str,
        context: CredentialContext,
        region: Optional[str],
        token_sink: TokenSink,
    ) -> Any:
        spec = self.resolve(service)
        logger.debug(f"Creating {spec.kind} for {service} (region={region})")
        return self.factory(spec, context, region, token_sink)
