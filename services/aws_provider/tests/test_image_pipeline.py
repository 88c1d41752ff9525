"""
Where: services/aws_provider/tests/test_image_pipeline.py
What: Build/tag/push orchestration with repository provisioning and login retry.
Why: Docker step ordering and output matching are the contract with the CLI.
"""

import asyncio

import pytest

from services.aws_provider.exceptions import DockerCommandError, ErrorKind, RemoteCallError
from services.aws_provider.services.image_pipeline import (
    UNENCRYPTED_WARNING,
    match_recovery,
    parse_digest,
    RecoveryAction,
)
from services.aws_provider.tests.fakes import IMAGE_SHA, FakeRunner, FakeServiceError, failure

REPOSITORY_URI = "999999999999.dkr.ecr.sa-east-1.amazonaws.com/test-lambda-docker"
PROXY_ENDPOINT = f"https://{REPOSITORY_URI}"
REPOSITORY_NAME = "serverless-test-service-dev"


def ecr_handlers(describe=None, create=None):
    return {
        "ECR": {
            "describe_repositories": describe
            if describe is not None
            else {"repositories": [{"repositoryUri": REPOSITORY_URI}]},
            "create_repository": create
            if create is not None
            else {"repository": {"repositoryUri": REPOSITORY_URI}},
            "get_authorization_token": {
                "authorizationData": [
                    {"proxyEndpoint": PROXY_ENDPOINT, "authorizationToken": "YXdzOmRvY2tlcmF1dGh0b2tlbg=="}
                ]
            },
        }
    }


@pytest.fixture
def build_provider(make_provider, tmp_path):
    (tmp_path / "Dockerfile").write_text("FROM scratch\n", encoding="utf-8")
    (tmp_path / "Dockerfile.dev").write_text("FROM scratch\n", encoding="utf-8")

    def _make(runner=None, images=None, handlers=None):
        runner = runner or FakeRunner()
        provider, factory = make_provider(
            provider={"ecr": {"images": images or {"baseimage": {"path": "./"}}}},
            handlers=handlers or ecr_handlers(),
            runner=runner,
        )
        return provider, factory, runner

    return _make


class TestBuildAndPush:
    @pytest.mark.asyncio
    async def test_existing_repository(self, build_provider, tmp_path):
        provider, factory, runner = build_provider()

        resolved = await provider.resolve_function_image("foo", "baseimage")

        assert resolved.uri == f"{REPOSITORY_URI}@sha256:{IMAGE_SHA}"
        assert resolved.code_sha256 == IMAGE_SHA
        assert len(factory.calls_to("ECR", "describe_repositories")) == 1
        assert factory.calls_to("ECR", "create_repository") == []
        assert runner.calls == [
            ("docker", "--version"),
            ("docker", "build", "-t", f"{REPOSITORY_NAME}:baseimage", "-f", str(tmp_path / "Dockerfile"), "./"),
            ("docker", "tag", f"{REPOSITORY_NAME}:baseimage", f"{REPOSITORY_URI}:baseimage"),
            ("docker", "push", f"{REPOSITORY_URI}:baseimage"),
        ]

    @pytest.mark.asyncio
    async def test_missing_repository_is_created_before_build(self, build_provider):
        provider, factory, runner = build_provider(
            handlers=ecr_handlers(
                describe=FakeServiceError(
                    "The repository does not exist", status_code=400, code="RepositoryNotFoundException"
                )
            )
        )

        resolved = await provider.resolve_function_image("foo", "baseimage")

        assert resolved.uri == f"{REPOSITORY_URI}@sha256:{IMAGE_SHA}"
        assert len(factory.calls_to("ECR", "describe_repositories")) == 1
        assert factory.calls_to("ECR", "create_repository") == [
            ("ECR", "create_repository", {"repositoryName": REPOSITORY_NAME}, "us-east-1")
        ]

    @pytest.mark.asyncio
    async def test_other_describe_failure_aborts_before_build(self, build_provider):
        provider, factory, runner = build_provider(
            handlers=ecr_handlers(describe=FakeServiceError("denied", status_code=400, code="AccessDeniedException"))
        )

        with pytest.raises(RemoteCallError):
            await provider.resolve_function_image("foo", "baseimage")

        assert factory.calls_to("ECR", "create_repository") == []
        assert runner.calls == [("docker", "--version")]

    @pytest.mark.asyncio
    async def test_implicit_path_in_provider(self, build_provider):
        provider, _, runner = build_provider(images={"baseimage": "./"})

        resolved = await provider.resolve_function_image("foo", "baseimage")

        assert resolved.code_sha256 == IMAGE_SHA
        assert len(runner.calls) == 4

    @pytest.mark.asyncio
    async def test_custom_dockerfile(self, build_provider, tmp_path):
        provider, _, runner = build_provider(images={"baseimage": {"path": "./", "file": "Dockerfile.dev"}})

        await provider.resolve_function_image("foo", "baseimage")

        assert runner.calls[1] == (
            "docker",
            "build",
            "-t",
            f"{REPOSITORY_NAME}:baseimage",
            "-f",
            str(tmp_path / "Dockerfile.dev"),
            "./",
        )

    @pytest.mark.asyncio
    async def test_explicit_name(self, build_provider):
        provider, _, _ = build_provider(images={"baseimage": "./"})

        resolved = await provider.resolve_function_image("foo", {"name": "baseimage"})

        assert resolved.uri == f"{REPOSITORY_URI}@sha256:{IMAGE_SHA}"

    @pytest.mark.asyncio
    async def test_image_shared_by_functions_is_built_once(self, build_provider):
        provider, factory, runner = build_provider()

        results = await asyncio.gather(
            provider.resolve_function_image("foo", "baseimage"),
            provider.resolve_function_image("bar", {"name": "baseimage"}),
        )

        assert results[0] == results[1]
        assert [call[1] for call in runner.calls].count("build") == 1
        assert len(factory.calls_to("ECR", "describe_repositories")) == 1


class TestLoginRetry:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("output", ["no basic auth credentials", "authorization token has expired"])
    async def test_login_then_push_once_more(self, build_provider, output):
        runner = FakeRunner({3: failure(output)})
        provider, factory, _ = build_provider(runner=runner)

        resolved = await provider.resolve_function_image("foo", "baseimage")

        assert runner.calls[3:] == [
            ("docker", "push", f"{REPOSITORY_URI}:baseimage"),
            ("docker", "login", "--username", "AWS", "--password-stdin", PROXY_ENDPOINT),
            ("docker", "push", f"{REPOSITORY_URI}:baseimage"),
        ]
        assert runner.inputs[4] == "dockerauthtoken"
        assert len(factory.calls_to("ECR", "get_authorization_token")) == 1
        assert resolved.code_sha256 == IMAGE_SHA

    @pytest.mark.asyncio
    async def test_digest_comes_from_retried_push(self, build_provider):
        retried_sha = "a" * 64
        runner = FakeRunner({3: failure("no basic auth credentials"), 4: "Login Succeeded", 5: f"digest: sha256:{retried_sha} size: 1"})
        provider, _, _ = build_provider(runner=runner)

        resolved = await provider.resolve_function_image("foo", "baseimage")

        assert resolved.digest == f"sha256:{retried_sha}"

    @pytest.mark.asyncio
    async def test_no_login_without_auth_failure(self, build_provider):
        provider, factory, runner = build_provider()

        await provider.resolve_function_image("foo", "baseimage")

        assert not any(call[1] == "login" for call in runner.calls)
        assert factory.calls_to("ECR", "get_authorization_token") == []

    @pytest.mark.asyncio
    async def test_warns_when_credentials_stored_unencrypted(self, build_provider, diagnostics):
        runner = FakeRunner(
            {3: failure("no basic auth credentials"), 4: "WARNING! Your password will be stored unencrypted"}
        )
        provider, _, _ = build_provider(runner=runner)

        resolved = await provider.resolve_function_image("foo", "baseimage")

        assert diagnostics.warnings == [UNENCRYPTED_WARNING]
        assert resolved.code_sha256 == IMAGE_SHA


class TestFailures:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "outcomes, kind",
        [
            ({0: failure()}, ErrorKind.DOCKER_COMMAND_NOT_AVAILABLE),
            ({1: failure()}, ErrorKind.DOCKER_BUILD_ERROR),
            ({2: failure()}, ErrorKind.DOCKER_TAG_ERROR),
            ({3: failure()}, ErrorKind.DOCKER_PUSH_ERROR),
            ({3: failure("no basic auth credentials"), 4: failure()}, ErrorKind.DOCKER_LOGIN_ERROR),
            ({3: failure("no basic auth credentials"), 5: failure("no basic auth credentials")}, ErrorKind.DOCKER_PUSH_ERROR),
        ],
    )
    async def test_step_failure_codes(self, build_provider, outcomes, kind):
        provider, _, _ = build_provider(runner=FakeRunner(outcomes))

        with pytest.raises(DockerCommandError) as exc_info:
            await provider.resolve_function_image("foo", "baseimage")

        assert exc_info.value.code == kind

    @pytest.mark.asyncio
    async def test_push_without_digest_fails(self, build_provider):
        provider, _, _ = build_provider(runner=FakeRunner(default="pushed"))

        with pytest.raises(DockerCommandError) as exc_info:
            await provider.resolve_function_image("foo", "baseimage")

        assert exc_info.value.code == ErrorKind.DOCKER_PUSH_ERROR

    @pytest.mark.asyncio
    async def test_failed_build_output_is_kept(self, build_provider):
        provider, _, _ = build_provider(runner=FakeRunner({1: failure("COPY failed: no such file")}))

        with pytest.raises(DockerCommandError) as exc_info:
            await provider.resolve_function_image("foo", "baseimage")

        assert "COPY failed" in exc_info.value.output
        assert "COPY failed" in exc_info.value.message


def test_recovery_rules():
    assert match_recovery("denied: no basic auth credentials") is RecoveryAction.LOGIN
    assert match_recovery("authorization token has expired. Reauthenticate") is RecoveryAction.LOGIN
    assert match_recovery("connection refused") is None


def test_parse_digest():
    assert parse_digest(f"latest: digest: sha256:{IMAGE_SHA} size: 1787") == f"sha256:{IMAGE_SHA}"
    assert parse_digest("no digest here") is None
