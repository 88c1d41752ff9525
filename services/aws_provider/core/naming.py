"""
Deterministic resource naming.

Pure functions of service, stage and function name; no I/O.
"""

from dataclasses import dataclass

DEPLOYMENT_BUCKET_LOGICAL_ID = "ServerlessDeploymentBucket"
REPOSITORY_PREFIX = "serverless"


def normalize_name(name: str) -> str:
    """Upper-case the first character, keep the rest."""
    return name[:1].upper() + name[1:]


def normalize_function_name(function_name: str) -> str:
    return normalize_name(function_name.replace("-", "Dash").replace("_", "Underscore"))


@dataclass(frozen=True)
class Naming:
    """Identifiers derived from one service/stage pair."""

    service: str
    stage: str

    def get_stack_name(self) -> str:
        return f"{self.service}-{self.stage}"

    def get_deployment_bucket_logical_id(self) -> str:
        return DEPLOYMENT_BUCKET_LOGICAL_ID

    def get_ecr_repository_name(self) -> str:
        # "/" survives so nested repository namespaces keep working
        return f"{REPOSITORY_PREFIX}-{self.service}-{self.stage}".lower()

    def get_lambda_logical_id(self, function_name: str) -> str:
        return f"{normalize_function_name(function_name)}LambdaFunction"
