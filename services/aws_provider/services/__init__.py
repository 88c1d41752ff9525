"""
Services package.

Provides the provider facade, request execution and image handling.
"""

from .client_registry import Boto3ClientFactory, ClientRegistry, ServiceSpec
from .image_pipeline import ImageBuildPipeline
from .image_resolver import ImageResolver
from .provider import AwsProvider
from .request_executor import RequestExecutor

__all__ = [
    "AwsProvider",
    "Boto3ClientFactory",
    "ClientRegistry",
    "ImageBuildPipeline",
    "ImageResolver",
    "RequestExecutor",
    "ServiceSpec",
]
