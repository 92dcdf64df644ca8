from __future__ import annotations

from typing import Any, List, Optional

from pydantic_ai import Agent
from pydantic_ai.messages import (
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.litellm import LiteLLMProvider

from app.config import get_settings
from app.constants.default_system_prompt import DefaultSystemPrompt
from app.infra.logging_config import get_logger
from app.schemas.bridge import BotConfig, HistoryItem, ReplyResult

logger = get_logger()

ASSISTANT_ROLE = "assistant"
USER_ROLE = "user"


def _history_to_message_list(history: List[HistoryItem]) -> List[Any]:
    """Convert chat history to pydantic_ai ModelMessage list for message_history."""
    out: List[Any] = []
    for item in history:
        content = (item.content or "").strip()
        if not content:
            continue
        if item.role == ASSISTANT_ROLE:
            out.append(ModelResponse(parts=[TextPart(content=content)]))
        else:
            out.append(ModelRequest(parts=[UserPromptPart(content=content)]))
    return out


def _format_bot_context(bot_config: BotConfig) -> str:
    """Bot personality and matching knowledge, placed ahead of the default prompt."""
    parts = []
    if bot_config.personality:
        parts.append(f"شخصية البوت:\n{bot_config.personality}")
    if bot_config.knowledge:
        parts.append("المعلومات المتاحة لديك:\n" + "\n\n".join(bot_config.knowledge))
    return "\n\n".join(parts)


def _message_list_with_system_prompt(
    system_prompt: str,
    history: List[HistoryItem],
    bot_config: Optional[BotConfig] = None,
) -> List[Any]:
    """Build message_history with system prompt always first, then conversation history."""

    # https://github.com/pydantic/pydantic-ai/issues/4039
    # https://ai.pydantic.dev/agent/#system-prompts
    full_prompt = system_prompt.strip()
    if bot_config:
        bot_block = _format_bot_context(bot_config)
        if bot_block:
            full_prompt = bot_block + "\n\n" + full_prompt
    system_message = ModelRequest(parts=[SystemPromptPart(content=full_prompt)])
    return [system_message] + _history_to_message_list(history)


def unavailable_reply() -> ReplyResult:
    return ReplyResult(
        reply=DefaultSystemPrompt.UNAVAILABLE_REPLY,
        handoff=True,
        handoff_reason="AI not configured",
    )


def error_reply(error: Exception) -> ReplyResult:
    return ReplyResult(
        reply=DefaultSystemPrompt.ERROR_REPLY,
        handoff=True,
        handoff_reason=f"AI error: {error}",
    )


class ReplyGenerator:
    """
    Generates the automated reply for an inbound customer message.

    Never raises for model problems: an unconfigured or failing model yields a
    fallback reply that asks for a human handoff.
    """

    def __init__(
        self,
        agent: Optional[Agent] = None,
        system_prompt: Optional[str] = None,
    ) -> None:
        self._agent = agent
        self._system_prompt = system_prompt or DefaultSystemPrompt.CONTENT

    @property
    def is_configured(self) -> bool:
        return self._agent is not None

    async def generate(
        self,
        history: List[HistoryItem],
        message: str,
        bot_config: Optional[BotConfig] = None,
    ) -> ReplyResult:
        if self._agent is None:
            logger.error("No LLM configured for automated replies")
            return unavailable_reply()

        bot_config = bot_config or BotConfig()
        message_history = _message_list_with_system_prompt(
            self._system_prompt, history, bot_config=bot_config
        )
        try:
            result = await self._agent.run(
                message,
                message_history=message_history,
                model_settings={
                    "temperature": bot_config.temperature,
                    "max_tokens": bot_config.max_tokens,
                },
            )
        except Exception as e:
            logger.exception("LLM reply generation failed: %s", e)
            return error_reply(e)

        output = result.output
        if not output.reply:
            logger.warning("LLM returned an empty reply")
            return error_reply(ValueError("missing reply"))
        logger.info(
            "LLM reply generated length=%d handoff=%s reason=%s",
            len(output.reply),
            output.handoff,
            output.handoff_reason,
        )
        return output


def build_agent(
    model_name: str,
    api_key: Optional[str] = None,
    api_base: Optional[str] = None,
) -> Agent:
    provider = LiteLLMProvider(api_key=api_key, api_base=api_base)
    model = OpenAIChatModel(model_name, provider=provider)
    logger.info(f"Initializing reply agent with model {model_name}")
    return Agent(model, output_type=ReplyResult)


def build_reply_generator_from_env() -> ReplyGenerator:
    settings = get_settings()
    logger.info(
        "Reply generator config: model=%s, api_key=%s, api_base=%s",
        settings.llm_model,
        "set" if settings.litellm_api_key else "not set",
        settings.litellm_api_base or "(default)",
    )
    if not settings.litellm_api_key:
        logger.warning(
            "LITELLM_API_KEY is not set; automated replies will hand chats to a human."
        )
        return ReplyGenerator(agent=None)

    return ReplyGenerator(
        agent=build_agent(
            model_name=settings.llm_model,
            api_key=settings.litellm_api_key,
            api_base=settings.litellm_api_base,
        )
    )
