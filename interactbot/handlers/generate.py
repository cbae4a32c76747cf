# interactbot/handlers/generate.py
"""
/generate image-prompt:<text>

Outcome classification:
- prompt rejected / downstream throttling → tell the user, return None
- undecodable payload, service failure, client init failure
                                          → generic reply, return the error
"""
from __future__ import annotations

from typing import Optional

from interactbot.core.domain import CommandDescriptor, Interaction, OptionSpec, OptionType
from interactbot.core.errors import ClientInitializationError, InternalError, UserDomainError
from interactbot.core.ports import Attachment, Responder
from interactbot.core.reporter import generic_failure_message
from interactbot.core.runtime import HandlerContext
from interactbot.infra.logging_config import LogContext, get_logger

logger = get_logger(__name__)

PROMPT_OPTION = "image-prompt"
MAX_PROMPT_LENGTH = 1000

GENERATE_COMMAND = CommandDescriptor(
    name="generate",
    description="Generate an image from a text prompt",
    options=(
        OptionSpec(
            name=PROMPT_OPTION,
            description="What the image should show",
            type=OptionType.STRING,
            required=True,
        ),
    ),
)


async def handle_generate(
    responder: Responder,
    interaction: Interaction,
    ctx: HandlerContext,
) -> Optional[Exception]:
    log_ctx = LogContext(logger, interaction_id=interaction.id, command=interaction.command_name)

    prompt = str(interaction.option(PROMPT_OPTION, "")).strip()
    if not prompt:
        await responder.send("Please provide an image prompt.")
        return None
    if len(prompt) > MAX_PROMPT_LENGTH:
        await responder.send(f"Image prompts are limited to {MAX_PROMPT_LENGTH} characters.")
        return None

    if ctx.clients is None:
        await responder.send(generic_failure_message(interaction.command_name))
        return InternalError("Image client factory is not configured")

    try:
        client = await ctx.clients.get()
    except ClientInitializationError as exc:
        await responder.send(generic_failure_message(interaction.command_name))
        return exc

    try:
        image = await client.generate(prompt)
    except UserDomainError as exc:
        log_ctx.info(f"Generation refused for user: {exc.__class__.__name__}")
        await responder.send(exc.user_message)
        return None
    except InternalError as exc:
        log_ctx.warning(f"Generation failed: {exc}")
        await responder.send(generic_failure_message(interaction.command_name))
        return exc

    await responder.send(
        content=f"> {prompt}",
        files=[Attachment(filename="image.png", data=image, content_type="image/png")],
    )
    return None
