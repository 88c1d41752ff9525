"""
Request Executor

Runs one logical remote call: shared in-flight deduplication, credential
injection, optional S3 transfer acceleration and bounded retries on
throttling. Blocking SDK calls run in a worker thread so the event loop is
never blocked.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from services.aws_provider.core.credentials import CredentialCell
from services.aws_provider.core.request_cache import RequestCache, RequestKey
from services.aws_provider.core.retry import (
    RetryPolicy,
    classify,
    describe_error,
    to_remote_call_error,
)
from services.aws_provider.models import CredentialContext
from services.aws_provider.services.client_registry import ClientRegistry, ServiceSpec
from services.common.core.request_context import clear_call_id, new_call_id

logger = logging.getLogger("aws_provider.request_executor")

ACCELERATED_S3_METHODS = frozenset(
    {"upload", "putObject", "put_object", "upload_file", "upload_fileobj"}
)

Sleep = Callable[[float], Awaitable[None]]


class RequestExecutor:
    def __init__(
        self,
        registry: ClientRegistry,
        credentials: Callable[[], CredentialContext],
        cell: CredentialCell,
        region: Callable[[], str],
        *,
        retry_policy: Optional[RetryPolicy] = None,
        cache: Optional[RequestCache] = None,
        acceleration_enabled: Callable[[], bool] = lambda: False,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Args:
            registry: service identifier -> client constructor
            credentials: returns the current shared CredentialContext
            cell: shared credential cell receiving refreshed session tokens
            region: returns the default region when a call names none
            acceleration_enabled: returns whether S3 acceleration is on for this deploy
        """
        self.registry = registry
        self._credentials = credentials
        self._cell = cell
        self._region = region
        self.retry_policy = retry_policy or RetryPolicy()
        self.cache = cache or RequestCache()
        self._acceleration_enabled = acceleration_enabled
        self._sleep = sleep

    async def request(
        self,
        service: str,
        method: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        region: Optional[str] = None,
        use_cache: bool = False,
    ) -> Any:
        """
        Execute ``service.method(**params)``.

        With ``use_cache`` every concurrent caller using the same
        (service, method, params, region) shares exactly one outbound call.

        Raises:
            UnknownServiceError: service identifier is not registered
            RemoteCallError: the call failed (after retries for throttling)
        """
        # Fail fast on unknown identifiers, before any cache entry exists.
        self.registry.resolve(service)
        resolved_region = region or self._region()

        if not use_cache:
            return await self._execute(service, method, params, resolved_region)

        key = RequestKey.build(service, method, params, resolved_region)
        return await self.cache.fetch(
            key, lambda: self._execute(service, method, params, resolved_region)
        )

    def can_accelerate(self, service: str, method: str) -> bool:
        return self._acceleration_enabled() and service == "S3" and method in ACCELERATED_S3_METHODS

    async def _execute(
        self,
        service: str,
        method: str,
        params: Optional[Mapping[str, Any]],
        region: str,
    ) -> Any:
        spec = self.registry.resolve(service)
        new_call_id(f"{service}.{method}")
        try:
            # Resolved once per call; reads the credentials file off the loop.
            base = await asyncio.to_thread(self._credentials)
            return await self._attempt(spec, base, service, method, params, region)
        finally:
            clear_call_id()

    async def _attempt(
        self,
        spec: ServiceSpec,
        base: CredentialContext,
        service: str,
        method: str,
        params: Optional[Mapping[str, Any]],
        region: str,
    ) -> Any:
        attempt = 0
        while True:
            attempt += 1
            # Picks up a session token refreshed by an earlier attempt.
            context = self._cell.get() or base
            if self.can_accelerate(service, method):
                context = context.model_copy(update={"accelerate_endpoint": True})

            try:
                return await asyncio.to_thread(self._call, spec, context, method, params, region)
            except Exception as e:
                details = describe_error(e)
                kind = classify(details)
                if self.retry_policy.should_retry(kind, attempt):
                    delay = self.retry_policy.delay(attempt)
                    logger.warning(
                        f"{service}.{method} throttled, retrying in {delay:.2f}s",
                        extra={"attempt": attempt, "region": region, "status_code": details.status_code},
                    )
                    await self._sleep(delay)
                    continue

                logger.debug(
                    f"{service}.{method} failed: {kind.value}",
                    extra={"attempt": attempt, "region": region, "provider_code": details.code},
                )
                raise to_remote_call_error(details, kind) from e

    def _call(
        self,
        spec: ServiceSpec,
        context: CredentialContext,
        method: str,
        params: Optional[Mapping[str, Any]],
        region: str,
    ) -> Any:
        client = self.registry.create(spec.identifier, context, region, self._cell.update_session_token)
        return spec.invoke(client, method, params)
