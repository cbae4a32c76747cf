# interactbot/infra/secrets.py
"""
Secret-backed downstream client factory.

The downstream credential lives in an external secret store. It is fetched
once, on first use, after the interaction has already been acknowledged,
and the client built from it is cached for the process lifetime.

Usage:
    factory = SecretBackedClientFactory(
        AwsSecretStore(region="us-east-1"),
        project_id="my-bot",
        secret_id="image-api-key",
        build=lambda key: ImageGenerationClient(api_key=key),
    )
    client = await factory.get()
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Generic, Optional, TypeVar

import boto3
from botocore.config import Config

from interactbot.core.errors import ClientInitializationError
from interactbot.core.ports import SecretStore
from interactbot.infra.logging_config import get_logger
from interactbot.infra.metrics import inc_counter

logger = get_logger(__name__)

T = TypeVar("T")


class SecretStoreError(Exception):
    """Raised when the secret store cannot return a usable value."""


class AwsSecretStore:
    """AWS Secrets Manager backed secret store.

    Secrets are addressed as ``<project_id>/<secret_id>``; ``AWSCURRENT``
    is always the latest version.
    """

    def __init__(self, region: Optional[str] = None, client: Any = None):
        self._region = region
        self._client = client

    def _get_client(self):
        """Get (or create) the Secrets Manager client."""
        if self._client is None:
            self._client = boto3.client(
                "secretsmanager",
                region_name=self._region,
                config=Config(retries={"max_attempts": 3, "mode": "standard"}),
            )
        return self._client

    @staticmethod
    def secret_name(project_id: str, secret_id: str) -> str:
        return f"{project_id}/{secret_id}" if project_id else secret_id

    def _access_latest_sync(self, project_id: str, secret_id: str) -> str:
        response = self._get_client().get_secret_value(
            SecretId=self.secret_name(project_id, secret_id),
            VersionStage="AWSCURRENT",
        )
        value = response.get("SecretString")
        if value is None:
            binary = response.get("SecretBinary")
            if binary is None:
                raise SecretStoreError(f"Secret '{secret_id}' has no value")
            value = binary.decode("utf-8") if isinstance(binary, bytes) else str(binary)
        return value

    async def access_latest(self, project_id: str, secret_id: str) -> str:
        # boto3 is blocking
        return await asyncio.to_thread(self._access_latest_sync, project_id, secret_id)


class SecretBackedClientFactory(Generic[T]):
    """
    Lazily build a client from a secret-store credential.

    Concurrent first calls share one fetch: the lock is taken only while
    nothing is cached, and the cache is re-checked once it is held.
    Failures are not cached, so a later call retries.
    """

    def __init__(
        self,
        store: SecretStore,
        project_id: str,
        secret_id: str,
        build: Callable[[str], T],
    ):
        self._store = store
        self._project_id = project_id
        self._secret_id = secret_id
        self._build = build
        self._client: Optional[T] = None
        self._lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._client is not None

    async def get(self) -> T:
        client = self._client
        if client is not None:
            return client

        async with self._lock:
            if self._client is not None:
                return self._client

            logger.info(f"Initializing downstream client from secret '{self._secret_id}'")
            try:
                raw = await self._store.access_latest(self._project_id, self._secret_id)
            except Exception as exc:
                inc_counter("client_init_failed", stage="fetch")
                logger.warning(
                    f"Secret fetch failed: secret={self._secret_id}, error={exc.__class__.__name__}"
                )
                raise ClientInitializationError(
                    f"Could not fetch secret '{self._secret_id}'"
                ) from exc

            credential = raw.strip()
            if not credential:
                inc_counter("client_init_failed", stage="fetch")
                raise ClientInitializationError(f"Secret '{self._secret_id}' is empty")

            try:
                client = self._build(credential)
            except Exception as exc:
                inc_counter("client_init_failed", stage="build")
                logger.warning(f"Downstream client construction failed: {exc.__class__.__name__}")
                raise ClientInitializationError("Could not construct downstream client") from exc

            self._client = client
            inc_counter("client_initialized")
            logger.info("Downstream client initialized")
            return client

    def reset(self) -> None:
        """Drop the cached client (the next get() fetches the secret again)."""
        self._client = None
