"""
Image Reference Resolver

Turns a function's ``image`` value (plus the provider-level ``ecr.images``
map) into a pushable URI and content digest: digest URIs are used as-is,
tag URIs are looked up in ECR, path images are built once per image name.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from services.aws_provider.exceptions import (
    DockerfileNotAvailableError,
    ErrorKind,
    ImageConfigurationError,
    RemoteCallError,
)
from services.aws_provider.models import (
    BuildTarget,
    ImageDescriptor,
    ImageSourceKind,
    ResolvedImage,
)
from services.aws_provider.services.image_pipeline import ImageBuildPipeline

logger = logging.getLogger("aws_provider.image_resolver")

Request = Callable[..., Awaitable[Any]]
ImageSpec = Union[str, Mapping[str, Any], None]

DIGEST_MARKER = "@sha256:"
DEFAULT_DOCKERFILE = "Dockerfile"


def is_image_uri(value: str) -> bool:
    """Registry references always carry a repository path; bare names never do."""
    return DIGEST_MARKER in value or "/" in value


def split_tag_reference(uri: str) -> Dict[str, str]:
    """
    Split ``<registry>/<repository>[:tag]`` into its parts.

    The tag separator is the last ":" after the last "/", so registry ports
    and nested repository names survive.
    """
    head, slash, tail = uri.rpartition("/")
    name, colon, tag = tail.partition(":")
    repository_path = f"{head}{slash}{name}"
    registry, _, repository = repository_path.partition("/")
    return {
        "repository_uri": repository_path,
        "registry": registry,
        "registry_id": registry.split(".", 1)[0],
        "repository_name": repository,
        "tag": tag if colon else "latest",
    }


class ImageResolver:
    """
    Resolve function images for one service.

    Configuration errors (invalid combinations, missing Dockerfiles) are
    raised by ``describe`` before any network or subprocess activity.
    """

    def __init__(
        self,
        provider_images: Optional[Mapping[str, Any]],
        service_path: Path,
        request: Request,
        pipeline: ImageBuildPipeline,
    ):
        self.provider_images = dict(provider_images or {})
        self.service_path = Path(service_path)
        self._request = request
        self.pipeline = pipeline
        self._builds: Dict[str, asyncio.Task] = {}

    def describe(self, function_name: str, image: ImageSpec) -> ImageDescriptor:
        if isinstance(image, str):
            if image in self.provider_images:
                return self._provider_entry(image, ImageSourceKind.PROVIDER_ALIAS)
            if is_image_uri(image):
                return self._uri_descriptor(ImageSourceKind.IMPLICIT_URI, image)
            raise ImageConfigurationError(
                ErrorKind.IMAGE_REFERENCE_UNDEFINED,
                image,
                f'Referenced "{image}" image in function "{function_name}" '
                "is not defined in provider.ecr.images",
            )

        image = image or {}
        uri, name = image.get("uri"), image.get("name")
        if uri and name:
            raise ImageConfigurationError(
                ErrorKind.IMAGE_BOTH_URI_AND_NAME,
                name,
                f'Either "uri" or "name" property (not both) has to be set for "{function_name}" function image',
            )
        if not uri and not name:
            raise ImageConfigurationError(
                ErrorKind.IMAGE_NEITHER_URI_NOR_NAME,
                function_name,
                f'Either "uri" or "name" property has to be set for "{function_name}" function image',
            )
        if uri:
            return self._uri_descriptor(ImageSourceKind.EXPLICIT_URI, uri)
        if name not in self.provider_images:
            raise ImageConfigurationError(
                ErrorKind.IMAGE_REFERENCE_UNDEFINED,
                name,
                f'Referenced "{name}" image in function "{function_name}" '
                "is not defined in provider.ecr.images",
            )
        return self._provider_entry(name, ImageSourceKind.EXPLICIT_NAME)

    def _provider_entry(self, name: str, kind: ImageSourceKind) -> ImageDescriptor:
        entry = self.provider_images[name]
        if isinstance(entry, str):
            if DIGEST_MARKER in entry:
                return self._uri_descriptor(kind, entry, name=name)
            return self._path_descriptor(kind, name, entry, None)

        entry = entry or {}
        uri, path = entry.get("uri"), entry.get("path")
        if uri and path:
            raise ImageConfigurationError(
                ErrorKind.IMAGE_BOTH_URI_AND_PATH,
                name,
                f'Either "uri" or "path" property (not both) has to be set for "{name}" image in provider.ecr.images',
            )
        if not uri and not path:
            raise ImageConfigurationError(
                ErrorKind.IMAGE_NEITHER_URI_NOR_PATH,
                name,
                f'Either "uri" or "path" property has to be set for "{name}" image in provider.ecr.images',
            )
        if uri:
            return self._uri_descriptor(kind, uri, name=name)
        return self._path_descriptor(kind, name, path, entry.get("file"))

    @staticmethod
    def _uri_descriptor(kind: ImageSourceKind, uri: str, name: Optional[str] = None) -> ImageDescriptor:
        digest = None
        if DIGEST_MARKER in uri:
            digest = uri[uri.rindex("@") + 1 :]
        return ImageDescriptor(source_kind=kind, name=name, uri=uri, digest=digest)

    def _path_descriptor(
        self, kind: ImageSourceKind, name: str, path: str, file: Optional[str]
    ) -> ImageDescriptor:
        dockerfile = self.service_path / path / (file or DEFAULT_DOCKERFILE)
        if not dockerfile.is_file():
            raise DockerfileNotAvailableError(str(dockerfile))
        return ImageDescriptor(source_kind=kind, name=name, path=path, dockerfile=str(dockerfile))

    async def resolve(self, function_name: str, image: ImageSpec) -> ResolvedImage:
        descriptor = self.describe(function_name, image)

        if descriptor.digest:
            return ResolvedImage(uri=descriptor.uri, digest=descriptor.digest)
        if descriptor.requires_build:
            return await self.build(descriptor)
        return await self.resolve_tag(descriptor.uri)

    async def resolve_tag(self, uri: str) -> ResolvedImage:
        reference = split_tag_reference(uri)
        result = await self._request(
            "ECR",
            "describeImages",
            {
                "imageIds": [{"imageTag": reference["tag"]}],
                "registryId": reference["registry_id"],
                "repositoryName": reference["repository_name"],
            },
        )
        details = (result or {}).get("imageDetails") or []
        if not details or not details[0].get("imageDigest"):
            raise RemoteCallError(ErrorKind.REMOTE_CALL_FAILED, f"No image found in ECR for {uri}")
        digest = details[0]["imageDigest"]
        logger.debug(f"Resolved {uri} to {digest}")
        return ResolvedImage(uri=f"{reference['repository_uri']}@{digest}", digest=digest)

    async def build(self, descriptor: ImageDescriptor) -> ResolvedImage:
        """Build once per image name; concurrent callers share the same run."""
        task = self._builds.get(descriptor.name)
        if task is None:
            target = BuildTarget(
                image_name=descriptor.name,
                context_path=descriptor.path,
                dockerfile_path=Path(descriptor.dockerfile),
            )
            task = asyncio.ensure_future(self.pipeline.build_and_push(target))
            self._builds[descriptor.name] = task
        return await asyncio.shield(task)
