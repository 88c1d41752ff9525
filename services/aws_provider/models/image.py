"""
Container image domain models.
"""

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ImageSourceKind(str, Enum):
    EXPLICIT_URI = "explicit-uri"
    EXPLICIT_NAME = "explicit-name"
    IMPLICIT_URI = "implicit-uri"
    PROVIDER_ALIAS = "provider-alias"


class ImageDescriptor(BaseModel):
    """
    A function image after parsing.

    Exactly one of ``uri`` or ``path`` determines the target: ``uri`` is
    pushed-as-is (digest) or looked up (tag); ``path`` is built.
    """

    model_config = ConfigDict(frozen=True)

    source_kind: ImageSourceKind
    name: Optional[str] = None
    uri: Optional[str] = None
    path: Optional[str] = None
    dockerfile: Optional[str] = None
    digest: Optional[str] = None

    @property
    def requires_build(self) -> bool:
        return self.uri is None


class ResolvedImage(BaseModel):
    """Pushable reference plus content digest (``sha256:<hex>``)."""

    model_config = ConfigDict(frozen=True)

    uri: str
    digest: str

    @property
    def code_sha256(self) -> str:
        return self.digest.split(":", 1)[1] if ":" in self.digest else self.digest


class Repository(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    uri: str


class BuildTarget(BaseModel):
    """Inputs of one build/tag/push pipeline run."""

    model_config = ConfigDict(frozen=True)

    image_name: str
    context_path: str
    dockerfile_path: Path
