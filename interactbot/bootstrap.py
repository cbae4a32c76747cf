# interactbot/bootstrap.py
"""
Startup wiring: turn Settings into the immutable runtime objects.

Everything here runs once per process, before the first request.
"""
from __future__ import annotations

from interactbot.config import Settings
from interactbot.core.dispatcher import FollowupRunner, InteractionDispatcher
from interactbot.core.ports import AlertSink
from interactbot.core.registry import CommandRegistry, SyncMode, SyncResult
from interactbot.core.reporter import ErrorReporter
from interactbot.core.runtime import BotRuntimeConfig
from interactbot.handlers import build_default_bindings, build_default_commands
from interactbot.infra.alert_sink import LoggingAlertSink
from interactbot.infra.image_client import ImageGenerationClient
from interactbot.infra.logging_config import get_logger
from interactbot.infra.secrets import AwsSecretStore, SecretBackedClientFactory
from interactbot.transport.platform_api import PlatformAPI
from interactbot.transport.signature import SignatureVerifier

logger = get_logger(__name__)


def build_runtime_config(s: Settings, alert_sink: AlertSink | None = None) -> BotRuntimeConfig:
    """Raises ConfigurationError if commands and handler bindings disagree."""
    extra = {"build_id": s.build_id} if s.build_id else {}
    return BotRuntimeConfig.build(
        application_id=s.application_id,
        public_key=s.public_key,
        bot_name=s.bot_name,
        commands=build_default_commands(),
        bindings=build_default_bindings(),
        alert_sink=alert_sink or LoggingAlertSink(),
        port=s.port,
        project_id=s.project_id,
        secret_id=s.secret_id,
        extra=extra,
    )


def build_client_factory(s: Settings) -> SecretBackedClientFactory[ImageGenerationClient]:
    def _build(api_key: str) -> ImageGenerationClient:
        return ImageGenerationClient(
            api_key=api_key,
            base_url=s.image_api_base_url,
            model=s.image_model,
            size=s.image_size,
        )

    return SecretBackedClientFactory(
        AwsSecretStore(region=s.aws_region),
        project_id=s.project_id,
        secret_id=s.secret_id,
        build=_build,
    )


def build_platform_api(s: Settings) -> PlatformAPI:
    return PlatformAPI(bot_token=s.bot_token, api_base=s.platform_api_base)


def build_dispatcher(
    s: Settings,
    runtime: BotRuntimeConfig | None = None,
    api: PlatformAPI | None = None,
) -> InteractionDispatcher:
    runtime = runtime or build_runtime_config(s)
    dispatcher = InteractionDispatcher(
        config=runtime,
        verifier=SignatureVerifier(runtime.public_key, max_skew_seconds=s.signature_max_skew_seconds),
        reporter=ErrorReporter(runtime.alert_sink, runtime.bot_name),
        followups=api or build_platform_api(s),
        runner=FollowupRunner(),
        clients=build_client_factory(s),
        followup_timeout=s.followup_timeout_seconds,
    )
    logger.info(f"Dispatcher ready: bot={runtime.bot_name}, commands={runtime.command_names}")
    return dispatcher


async def sync_commands(
    s: Settings,
    mode: SyncMode,
    runtime: BotRuntimeConfig | None = None,
    api: PlatformAPI | None = None,
) -> SyncResult:
    """Install or tear down the bot's commands. Install failures raise RegistrationError."""
    runtime = runtime or build_runtime_config(s)
    registry = CommandRegistry(api or build_platform_api(s), runtime.application_id)
    return await registry.sync(runtime.commands, mode)
