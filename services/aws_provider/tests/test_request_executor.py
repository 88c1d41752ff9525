"""
Where: services/aws_provider/tests/test_request_executor.py
What: Retry, deduplication, acceleration and token refresh behaviour of provider requests.
Why: These are the contracts every remote call relies on.
"""

import asyncio

import pytest

from services.aws_provider.exceptions import ErrorKind, RemoteCallError, UnknownServiceError
from services.aws_provider.tests.fakes import FakeServiceError


class TestRequest:
    @pytest.mark.asyncio
    async def test_returns_call_result(self, make_provider):
        provider, factory = make_provider(
            handlers={"S3": {"put_object": lambda **params: {"called": True, **params}}}
        )

        result = await provider.request("S3", "putObject", {"Bucket": "b", "Key": "k"})

        assert result == {"called": True, "Bucket": "b", "Key": "k"}
        assert factory.calls == [("S3", "put_object", {"Bucket": "b", "Key": "k"}, "us-east-1")]

    @pytest.mark.asyncio
    async def test_explicit_region_is_used(self, make_provider):
        provider, factory = make_provider(handlers={"Lambda": {"list_functions": {}}})

        await provider.request("Lambda", "listFunctions", region="eu-west-1")

        assert factory.calls[0][3] == "eu-west-1"

    @pytest.mark.asyncio
    async def test_unknown_service_fails_before_any_call(self, make_provider):
        provider, factory = make_provider()

        with pytest.raises(UnknownServiceError) as exc_info:
            await provider.request("NoSuchService", "doThing")

        assert exc_info.value.code == ErrorKind.UNKNOWN_SERVICE
        assert factory.contexts == []

    @pytest.mark.asyncio
    async def test_document_client_is_a_distinct_identifier(self, make_provider):
        provider, factory = make_provider(handlers={"DynamoDB.DocumentClient": {"batch_get_item": {"Responses": {}}}})

        assert await provider.request("DynamoDB.DocumentClient", "batchGetItem", {"RequestItems": {}}) == {
            "Responses": {}
        }


class TestRetries:
    @pytest.mark.asyncio
    async def test_retries_429_even_when_not_retryable(self, make_provider):
        """Retry once on 429 and return the second result."""
        provider, factory = make_provider(
            handlers={
                "S3": {
                    "error": [
                        FakeServiceError("Rate exceeded", status_code=429, retryable=False),
                        {"ok": True},
                    ]
                }
            }
        )

        result = await provider.request("S3", "error", {})

        assert result == {"ok": True}
        assert len(factory.calls) == 2

    @pytest.mark.asyncio
    async def test_does_not_retry_403(self, make_provider):
        provider, factory = make_provider(
            handlers={"S3": {"error": FakeServiceError("Forbidden", status_code=403, retryable=True)}}
        )

        with pytest.raises(RemoteCallError) as exc_info:
            await provider.request("S3", "error", {})

        assert len(factory.calls) == 1
        assert exc_info.value.code == ErrorKind.REMOTE_CALL_FAILED
        assert exc_info.value.message == "Forbidden"

    @pytest.mark.asyncio
    async def test_throttling_exhausts_budget(self, make_provider):
        provider, factory = make_provider(
            handlers={"S3": {"error": FakeServiceError("Rate exceeded", status_code=429)}}
        )

        with pytest.raises(RemoteCallError) as exc_info:
            await provider.request("S3", "error", {})

        assert len(factory.calls) == 4
        assert exc_info.value.code == ErrorKind.THROTTLED
        assert exc_info.value.message == "Rate exceeded"

    @pytest.mark.asyncio
    async def test_stack_quota_error_is_not_retried(self, make_provider):
        provider, factory = make_provider(
            handlers={
                "CloudFormation": {
                    "create_stack": FakeServiceError(
                        "Limit on the number of stacks exceeded", status_code=400, code="LimitExceededException"
                    )
                }
            }
        )

        with pytest.raises(RemoteCallError) as exc_info:
            await provider.request("CloudFormation", "createStack", {"StackName": "svc-dev"})

        assert len(factory.calls) == 1
        assert exc_info.value.code == ErrorKind.REMOTE_CALL_FAILED
        assert exc_info.value.provider_code == "LimitExceededException"

    @pytest.mark.asyncio
    async def test_code_surfaces_when_message_is_null(self, make_provider):
        provider, _ = make_provider(
            handlers={"S3": {"error": FakeServiceError(None, status_code=500, code="ServiceUnavailable")}}
        )

        with pytest.raises(RemoteCallError) as exc_info:
            await provider.request("S3", "error", {})

        assert str(exc_info.value) == "ServiceUnavailable"

    @pytest.mark.asyncio
    async def test_missing_credentials_not_retried_and_points_to_docs(self, make_provider):
        provider, factory = make_provider(
            handlers={"S3": {"error": FakeServiceError("Missing credentials in config", status_code=403)}}
        )

        with pytest.raises(RemoteCallError) as exc_info:
            await provider.request("S3", "error", {})

        assert len(factory.calls) == 1
        assert exc_info.value.code == ErrorKind.MISSING_CREDENTIALS
        assert "in our docs here:" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_backoff_waits_between_attempts(self, make_provider):
        provider, _ = make_provider(
            handlers={"S3": {"error": [FakeServiceError("slow down", status_code=429), "done"]}}
        )
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)

        provider.executor._sleep = fake_sleep

        assert await provider.request("S3", "error") == "done"
        assert delays == [0]


class TestCache:
    @pytest.mark.asyncio
    async def test_parallel_cached_requests_share_one_call(self, make_provider):
        provider, factory = make_provider(
            handlers={"CloudFormation": {"describe_stacks": {"Stacks": [{"StackName": "foo"}]}}}
        )

        results = await asyncio.gather(
            *(
                provider.request("CloudFormation", "describeStacks", {"StackName": "foo"}, use_cache=True)
                for _ in range(1000)
            )
        )

        assert len(factory.calls) == 1
        assert all(result == {"Stacks": [{"StackName": "foo"}]} for result in results)

    @pytest.mark.asyncio
    async def test_different_regions_are_different_keys(self, make_provider):
        provider, factory = make_provider(handlers={"CloudFormation": {"describe_stacks": {"Stacks": []}}})

        await asyncio.gather(
            *(
                provider.request(
                    "CloudFormation",
                    "describeStacks",
                    {"StackName": "foo"},
                    region="us-east-1" if i % 2 else "ap-northeast-1",
                    use_cache=True,
                )
                for i in range(100)
            )
        )

        assert len(factory.calls) == 2

    @pytest.mark.asyncio
    async def test_results_are_not_shared_objects(self, make_provider):
        provider, _ = make_provider(handlers={"STS": {"get_caller_identity": {"Account": "1"}}})

        first = await provider.request("STS", "getCallerIdentity", use_cache=True)
        first["Account"] = "mutated"
        second = await provider.request("STS", "getCallerIdentity", use_cache=True)

        assert second == {"Account": "1"}

    @pytest.mark.asyncio
    async def test_uncached_requests_always_call(self, make_provider):
        provider, factory = make_provider(handlers={"STS": {"get_caller_identity": {"Account": "1"}}})

        await provider.request("STS", "getCallerIdentity")
        await provider.request("STS", "getCallerIdentity")

        assert len(factory.calls) == 2


class TestAcceleration:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["upload", "putObject"])
    async def test_accelerates_s3_uploads_when_enabled(self, make_provider, method):
        provider, factory = make_provider(
            options={"aws-s3-accelerate": True},
            handlers={"S3": {"put_object": {}}},
        )

        await provider.request("S3", method, {"Bucket": "b", "Key": "k", "Body": b""})

        assert factory.contexts[-1].accelerate_endpoint is True
        assert provider.get_credentials().accelerate_endpoint is False

    @pytest.mark.asyncio
    async def test_other_calls_are_not_accelerated(self, make_provider):
        provider, factory = make_provider(
            options={"aws-s3-accelerate": True},
            handlers={"S3": {"get_object": {}}},
        )

        await provider.request("S3", "getObject", {"Bucket": "b", "Key": "k"})

        assert factory.contexts[-1].accelerate_endpoint is False

    @pytest.mark.asyncio
    async def test_uploads_not_accelerated_without_option(self, make_provider):
        provider, factory = make_provider(handlers={"S3": {"put_object": {}}})

        await provider.request("S3", "putObject", {"Bucket": "b", "Key": "k"})

        assert factory.contexts[-1].accelerate_endpoint is False


class TestSessionTokenRefresh:
    @pytest.mark.asyncio
    async def test_refreshed_token_is_retained(self, make_provider):
        """A token published by the transport is visible through get_credentials."""

        def refresh(spec, context, region, token_sink):
            token_sink("123")

        provider, _ = make_provider(
            handlers={"CloudFormation": {"describe_stacks": {}}},
            on_create=refresh,
        )

        await provider.request("CloudFormation", "describeStacks", {"StackName": "foo"}, region="ap-northeast-1")

        assert provider.get_credentials().session_token == "123"

    @pytest.mark.asyncio
    async def test_retry_uses_token_refreshed_by_previous_attempt(self, make_provider):
        def refresh(spec, context, region, token_sink):
            token_sink("fresh")

        provider, factory = make_provider(
            handlers={"S3": {"error": [FakeServiceError("Rate exceeded", status_code=429), "done"]}},
            on_create=refresh,
        )

        assert await provider.request("S3", "error") == "done"
        assert factory.contexts[0].session_token is None
        assert factory.contexts[1].session_token == "fresh"


class TestCredentialResolution:
    @pytest.mark.asyncio
    async def test_resolved_once_per_call_across_retries(self, make_provider, monkeypatch):
        provider, factory = make_provider(
            handlers={"S3": {"error": [FakeServiceError("Rate exceeded", status_code=429)] * 3 + ["done"]}}
        )
        resolve = provider.resolver.resolve
        resolutions = []

        def counting_resolve(*args, **kwargs):
            resolutions.append(args)
            return resolve(*args, **kwargs)

        monkeypatch.setattr(provider.resolver, "resolve", counting_resolve)

        assert await provider.request("S3", "error") == "done"
        assert len(factory.calls) == 4
        assert len(resolutions) == 1
