import pytest

from services.aws_provider.config import ProviderSettings
from services.aws_provider.core.credentials import EnvironmentSnapshot
from services.aws_provider.core.retry import RetryPolicy
from services.aws_provider.models import ProviderConfig, ServiceConfig
from services.aws_provider.services.client_registry import ClientRegistry
from services.aws_provider.services.provider import AwsProvider
from services.aws_provider.tests.fakes import (
    CREDENTIALS_FILE_CONTENT,
    FakeClientFactory,
    FakeRunner,
    RecordingDiagnostics,
)


@pytest.fixture
def credentials_file(tmp_path):
    path = tmp_path / "credentials"
    path.write_text(CREDENTIALS_FILE_CONTENT, encoding="utf-8")
    return path


@pytest.fixture
def make_environment(credentials_file):
    """Environment snapshot pointing at the temporary credentials file."""

    def _make(**values):
        values.setdefault("AWS_SHARED_CREDENTIALS_FILE", str(credentials_file))
        return EnvironmentSnapshot(values)

    return _make


@pytest.fixture
def settings(monkeypatch, tmp_path):
    for name in ("proxy", "HTTPS_PROXY", "https_proxy", "HTTP_PROXY", "http_proxy", "ca", "cafile"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return ProviderSettings()


@pytest.fixture
def diagnostics():
    return RecordingDiagnostics()


@pytest.fixture
def make_provider(make_environment, settings, tmp_path, diagnostics):
    """
    Build an AwsProvider wired to fakes.

    Returns (provider, factory); pass ``runner=`` to drive the image pipeline.
    """

    def _make(
        provider=None,
        options=None,
        handlers=None,
        env=None,
        runner=None,
        on_create=None,
        service="test-service",
    ):
        factory = FakeClientFactory(handlers, on_create=on_create)
        config = ServiceConfig(
            service=service,
            service_path=tmp_path,
            provider=provider if isinstance(provider, ProviderConfig) else ProviderConfig(**(provider or {})),
        )
        aws = AwsProvider(
            config,
            options,
            settings=settings,
            environment=make_environment(**(env or {})),
            registry=ClientRegistry(factory),
            runner=runner or FakeRunner(),
            diagnostics=diagnostics,
            retry_policy=RetryPolicy(max_attempts=4, base_delay=0, cap=0),
        )
        return aws, factory

    return _make
