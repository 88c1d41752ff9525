"""
Data model definitions package.

Aggregates Pydantic models for use in other modules.
"""

from .config import (
    AlbConfig,
    DeploymentBucketObject,
    EcrConfig,
    ProviderConfig,
    ProviderCredentials,
    ServiceConfig,
)
from .credentials import CredentialContext
from .image import BuildTarget, ImageDescriptor, ImageSourceKind, Repository, ResolvedImage

__all__ = [
    "AlbConfig",
    "DeploymentBucketObject",
    "EcrConfig",
    "ProviderConfig",
    "ProviderCredentials",
    "ServiceConfig",
    "CredentialContext",
    "BuildTarget",
    "ImageDescriptor",
    "ImageSourceKind",
    "Repository",
    "ResolvedImage",
]
