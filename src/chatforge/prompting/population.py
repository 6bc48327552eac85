"""Population pipeline.

Turns a :class:`PromptSource` and :class:`PromptSettings` into an assembled,
token-budgeted chat. Content is added in priority order so that when the
budget runs out the oldest chat history and surplus example dialogues are the
first things left out.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from ..core.config import settings as app_settings
from ..core.domain.chat import GenerationType, HistoryEntry
from ..core.domain.prompts import InjectionPosition, Prompt, PromptCollection, Role
from ..core.domain.settings import NamesBehavior, PromptSettings
from ..core.domain.source import ExtensionPromptPosition, PromptSource
from ..core.utils.tokens import REPLY_PRIMING_TOKENS, TokenCounter, get_token_counter
from ..media.images import ImageFetcher
from .collection import MessageCollection
from .completion import ChatCompletion
from .exceptions import IdentifierNotFound, TokenBudgetExceeded
from .formatting import format_chat_history, format_message_examples
from .injection import EXTENSION_ROLES, extension_prompts_in_chat, inject_depth_prompts
from .macros import MacroContext, format_world_info, is_valid_name, sanitize_name
from .message import Message

logger = logging.getLogger(__name__)

# Extension keys with a dedicated identifier in the prompt collection
KNOWN_EXTENSION_PROMPTS = {
    "1_memory": "summary",
    "2_floating_prompt": "authorsNote",
    "3_vectors": "vectorsMemory",
    "4_vectors_data_bank": "vectorsDataBank",
    "chromadb": "smartContext",
}

EXTENSION_ANCHORS = {
    ExtensionPromptPosition.BEFORE_PROMPT: "start",
    ExtensionPromptPosition.IN_PROMPT: "end",
}

# Relative prompts that are always placed before the control prompts are reserved
LEADING_PROMPTS = (
    "worldInfoBefore",
    "main",
    "worldInfoAfter",
    "charDescription",
    "charPersonality",
    "scenario",
    "personaDescription",
)

TOOL_CALL_TYPES = {GenerationType.NORMAL, GenerationType.SWIPE, GenerationType.REGENERATE}


@dataclass
class PreparedChat:
    """Result of a prompt assembly run."""

    chat: list[dict[str, Any]]
    token_budget: int
    token_breakdown: dict[str, int] = field(default_factory=dict)
    overridden_prompts: list[str] = field(default_factory=list)


class PromptAssembler:
    """Builds a chat completion for a single generation request."""

    def __init__(
        self,
        source: PromptSource,
        prompt_settings: PromptSettings,
        token_counter: TokenCounter | None = None,
        fetcher: ImageFetcher | None = None,
    ):
        """Initialize the assembler.

        Args:
            source: Character, persona, history and extension data
            prompt_settings: Templates, behavior flags and prompt order
            token_counter: Counter used for every message, defaults to tiktoken
            fetcher: Media fetcher for inline images and videos
        """
        self.source = source
        self.settings = prompt_settings
        self.token_counter = token_counter or get_token_counter()
        self.fetcher = fetcher
        self.macros = MacroContext.from_source(source)

    async def create_message(
        self, role: str | Role, content: str | None, identifier: str
    ) -> Message:
        role = role.value if isinstance(role, Role) else role
        return await Message.create(role, content, identifier, self.token_counter)

    def prepare_prompt(self, prompt: Prompt, original: str | None = None) -> Prompt:
        """Copy a prompt with its macros substituted."""
        extra = {"original": original} if original is not None else {}
        return prompt.model_copy(update={"content": self.macros.substitute(prompt.content, **extra)})

    def get_prompt_collection(self) -> PromptCollection:
        """Prompts from the prompt order, in order, with macros substituted.

        A disabled main prompt is kept with empty content so that prompts
        anchored to it still have a place to go.
        """
        definitions = {prompt.identifier: prompt for prompt in self.settings.prompts}
        collection = PromptCollection()

        for entry in self.settings.prompt_order:
            prompt = definitions.get(entry.identifier)
            if prompt is None:
                logger.warning(f"Prompt order references unknown prompt: {entry.identifier}")
                continue

            if entry.enabled:
                collection.add(self.prepare_prompt(prompt))
            elif entry.identifier == "main":
                collection.add(prompt.model_copy(update={"content": ""}))

        return collection

    def _system_prompts(self) -> list[Prompt]:
        """Prompts whose content is supplied at generation time."""
        source = self.source
        character = source.character
        template = self.settings

        scenario = character.scenario
        if scenario and template.scenario_format.strip():
            scenario = self.macros.substitute(template.scenario_format)

        personality = character.personality
        if personality and template.personality_format.strip():
            personality = self.macros.substitute(template.personality_format)

        impersonation = ""
        if source.type == GenerationType.IMPERSONATE:
            impersonation = self.macros.substitute(template.impersonation_prompt)

        prompts = [
            Prompt(identifier="worldInfoBefore", content=format_world_info(source.world_info_before, template.wi_format)),
            Prompt(identifier="worldInfoAfter", content=format_world_info(source.world_info_after, template.wi_format)),
            Prompt(identifier="charDescription", content=character.description),
            Prompt(identifier="charPersonality", content=personality),
            Prompt(identifier="scenario", content=scenario),
            Prompt(identifier="impersonate", content=impersonation),
            Prompt(identifier="quietPrompt", content=source.quiet_prompt),
            Prompt(identifier="groupNudge", content=self.macros.substitute(template.group_nudge_prompt)),
            Prompt(identifier="bias", role=Role.ASSISTANT, content=source.bias),
        ]

        if source.persona_description:
            prompts.append(Prompt(identifier="personaDescription", content=source.persona_description))

        for key, extension in source.extension_prompts.items():
            if not extension.value or extension.position not in EXTENSION_ANCHORS:
                continue
            identifier = KNOWN_EXTENSION_PROMPTS.get(key)
            known = identifier is not None
            if not known:
                identifier = re.sub(r"\W", "_", key)
            prompts.append(Prompt(
                identifier=identifier,
                role=EXTENSION_ROLES[extension.role],
                content=extension.value,
                position=EXTENSION_ANCHORS.get(extension.position),
                extension=not known,
            ))

        return [p.model_copy(update={"system_prompt": True}) for p in prompts]

    def prepare_prompts(self) -> PromptCollection:
        """Merge generation-time prompts into the ordered prompt collection.

        Prompts with a slot in the prompt order keep that slot and its
        placement metadata; the rest are appended. Character overrides of the
        main and post-history prompts are applied last.
        """
        prompts = self.get_prompt_collection()
        # Markers left out of the prompt order stay out of the chat
        orderable = {prompt.identifier for prompt in self.settings.prompts}

        for system_prompt in self._system_prompts():
            index = prompts.index(system_prompt.identifier)
            if index == -1 and system_prompt.identifier in orderable:
                continue
            if index != -1:
                ordered = prompts.get(system_prompt.identifier)
                system_prompt = system_prompt.model_copy(update={
                    "role": ordered.role,
                    "injection_position": ordered.injection_position,
                    "injection_depth": ordered.injection_depth,
                    "injection_order": ordered.injection_order,
                    "forbid_overrides": ordered.forbid_overrides,
                })
                prompts.set(self.prepare_prompt(system_prompt), index)
            else:
                prompts.add(self.prepare_prompt(system_prompt))

        character = self.source.character
        self._apply_override(prompts, "main", character.system_prompt)
        self._apply_override(prompts, "jailbreak", character.post_history_instructions)

        return prompts

    def _apply_override(self, prompts: PromptCollection, identifier: str, content: str) -> None:
        prompt = prompts.get(identifier)
        if not content or prompt is None:
            return
        if prompt.forbid_overrides or not self.settings.is_prompt_enabled(identifier):
            logger.debug(f"Character override of {identifier} ignored")
            return

        replacement = self.prepare_prompt(prompt.model_copy(update={"content": content}), original=prompt.content)
        prompts.override(replacement, prompts.index(identifier))

    async def _add_to_completion(
        self,
        prompts: PromptCollection,
        completion: ChatCompletion,
        identifier: str,
        target: str | None = None,
    ) -> None:
        prompt = prompts.get(identifier)
        if prompt is None:
            return
        if prompt.injection_position == InjectionPosition.ABSOLUTE:
            completion.log(f"Skipping {identifier}, it is injected into chat history")
            return

        index = prompts.index(target or identifier)
        message = await self.create_message(prompt.role, prompt.content, prompt.identifier)
        completion.add(MessageCollection(identifier, message), index)

    async def populate_chat_history(
        self,
        history: list[HistoryEntry],
        prompts: PromptCollection,
        completion: ChatCompletion,
    ) -> None:
        """Add as much chat history as the budget allows, newest first.

        Stops at the first message that does not fit. The new-chat marker, the
        group nudge and the continue nudge are reserved up front so history
        can never crowd them out.
        """
        if not prompts.has("chatHistory"):
            return

        template = self.settings
        completion.add(MessageCollection("chatHistory"), prompts.index("chatHistory"))

        new_chat_template = template.new_group_chat_prompt if self.source.is_group else template.new_chat_prompt
        new_chat_message = await self.create_message(
            Role.SYSTEM, self.macros.substitute(new_chat_template), "newMainChat"
        )
        completion.reserve_budget(new_chat_message)

        group_nudge_message = None
        group_nudge = prompts.get("groupNudge")
        if self.source.is_group and group_nudge is not None and self.source.type != GenerationType.IMPERSONATE:
            group_nudge_message = await self.create_message(Role.SYSTEM, group_nudge.content, "groupNudge")
            completion.reserve_budget(group_nudge_message)

        history = list(history)
        continue_collection = None
        if (
            self.source.type == GenerationType.CONTINUE
            and self.source.cycle_prompt
            and not template.continue_prefill
        ):
            continue_collection = MessageCollection("continueNudge")
            last_index = next(
                (i for i in range(len(history) - 1, -1, -1) if not history[i].injected), -1
            )
            if last_index != -1:
                continued = history.pop(last_index)
                continue_collection.add(
                    await self.create_message(continued.role, continued.content, "continueMessage")
                )
            nudge = self.macros.substitute(
                template.continue_nudge_prompt, lastChatMessage=self.source.cycle_prompt.strip()
            )
            continue_collection.add(await self.create_message(Role.SYSTEM, nudge, "continueNudge"))
            completion.reserve_budget(continue_collection)

        if history and history[-1].role == "assistant" and template.send_if_empty:
            empty_replacement = await self.create_message(
                Role.USER, self.macros.substitute(template.send_if_empty), "emptyUserMessageReplacement"
            )
            if completion.can_afford(empty_replacement):
                completion.insert(empty_replacement, "chatHistory")

        for offset, entry in enumerate(reversed(history)):
            identifier = f"chatHistory-{len(history) - offset}"
            message = await self.create_message(entry.role, entry.content, identifier)

            if template.names_behavior == NamesBehavior.COMPLETION and entry.name:
                name = entry.name if is_valid_name(entry.name) else sanitize_name(entry.name)
                await message.set_name(name)

            if template.image_inlining and entry.image:
                await message.add_image(
                    entry.image,
                    quality=template.inline_image_quality,
                    source=template.chat_completion_source,
                    fetcher=self.fetcher,
                )

            if template.video_inlining and entry.video:
                await message.add_video(entry.video, fetcher=self.fetcher)

            if template.function_calling and entry.invocations:
                tool_call_message = await self.create_message(message.role, None, f"toolCall-{identifier}")
                await tool_call_message.set_tool_calls(entry.invocations)
                results = [
                    await self.create_message(Role.TOOL, invocation.result or "[No content]", invocation.id)
                    for invocation in reversed(entry.invocations)
                ]

                if not completion.can_afford_all([tool_call_message, *results]):
                    break
                for result in results:
                    completion.insert_at_start(result, "chatHistory")
                completion.insert_at_start(tool_call_message, "chatHistory")
                continue

            if not completion.can_afford(message):
                break
            completion.insert_at_start(message, "chatHistory")

        completion.free_budget(new_chat_message)
        completion.insert_at_start(new_chat_message, "chatHistory")

        if group_nudge_message is not None:
            completion.free_budget(group_nudge_message)
            completion.insert_at_end(group_nudge_message, "chatHistory")

        if continue_collection is not None:
            completion.free_budget(continue_collection)
            completion.add(continue_collection, -1)

    async def populate_dialogue_examples(
        self,
        examples: list[list[HistoryEntry]],
        prompts: PromptCollection,
        completion: ChatCompletion,
    ) -> None:
        """Add whole example dialogues until one no longer fits."""
        if not prompts.has("dialogueExamples"):
            return

        completion.add(MessageCollection("dialogueExamples"), prompts.index("dialogueExamples"))
        if not examples:
            return

        new_example_chat = await self.create_message(
            Role.SYSTEM, self.macros.substitute(self.settings.new_example_chat_prompt), "newChat"
        )

        for dialogue_index, dialogue in enumerate(examples):
            messages = []
            for turn_index, turn in enumerate(dialogue):
                message = await self.create_message(
                    Role.SYSTEM, turn.content, f"dialogueExamples {dialogue_index}-{turn_index}"
                )
                await message.set_name(turn.name)
                messages.append(message)

            if not completion.can_afford_all([new_example_chat, *messages]):
                break

            completion.insert(new_example_chat, "dialogueExamples")
            for message in messages:
                completion.insert(message, "dialogueExamples")

    async def _reserve_tool_tokens(self, completion: ChatCompletion) -> None:
        if not (self.settings.function_calling and self.source.tools):
            return
        if self.source.type not in TOOL_CALL_TYPES:
            return

        tool_tokens = await self.token_counter.count_async(
            {"role": "user", "content": json.dumps({"tools": self.source.tools})}
        )
        completion.log(f"Reserving {tool_tokens} tokens for tool definitions")
        completion.reserve_budget(tool_tokens)

    async def _prefill_continued_message(
        self, history: list[HistoryEntry], control_prompts: MessageCollection, completion: ChatCompletion
    ) -> None:
        """Move the message being continued into the control prompts."""
        if not history:
            return

        continued = history.pop()
        prefill = ""
        if continued.role == "assistant" and self.settings.supports_assistant_prefill():
            prefill = self.macros.substitute(self.settings.assistant_prefill)

        content = "\n\n".join(part for part in (prefill, continued.content) if part)
        message = await self.create_message(continued.role, content, "continuePrefill")
        if self.settings.names_behavior == NamesBehavior.COMPLETION and continued.name:
            await message.set_name(sanitize_name(continued.name))

        control_prompts.add(message)
        completion.reserve_budget(message)

    async def populate_chat_completion(
        self,
        prompts: PromptCollection,
        completion: ChatCompletion,
        history: list[HistoryEntry],
        examples: list[list[HistoryEntry]],
    ) -> None:
        """Fill the completion in priority order.

        Mandatory prompts come first and raise :class:`TokenBudgetExceeded`
        when they cannot fit. Chat history and example dialogues then take
        whatever budget is left.
        """
        source = self.source
        completion.reserve_budget(REPLY_PRIMING_TOKENS)

        for identifier in LEADING_PROMPTS:
            await self._add_to_completion(prompts, completion, identifier)

        completion.set_overridden_prompts(prompts.overridden_prompts)

        control_prompts = MessageCollection("controlPrompts")
        impersonate = prompts.get("impersonate")
        if source.type == GenerationType.IMPERSONATE and impersonate is not None:
            control_prompts.add(await self.create_message(impersonate.role, impersonate.content, "impersonate"))

        quiet = prompts.get("quietPrompt")
        if quiet is not None and quiet.content:
            quiet_message = await self.create_message(quiet.role, quiet.content, "quietPrompt")
            if self.settings.image_inlining and source.quiet_image:
                await quiet_message.add_image(
                    source.quiet_image,
                    quality=self.settings.inline_image_quality,
                    source=self.settings.chat_completion_source,
                    fetcher=self.fetcher,
                )
            control_prompts.add(quiet_message)

        completion.reserve_budget(control_prompts)

        user_relative = [
            p.identifier
            for p in prompts
            if not p.system_prompt and not p.extension
            and p.injection_position != InjectionPosition.ABSOLUTE
            and p.identifier not in LEADING_PROMPTS
        ]
        for identifier in ["nsfw", "jailbreak", *user_relative]:
            await self._add_to_completion(prompts, completion, identifier)

        await self._add_to_completion(prompts, completion, "enhanceDefinitions")

        if source.bias.strip():
            await self._add_to_completion(prompts, completion, "bias")

        await self._insert_anchored_prompts(prompts, completion)
        await self._reserve_tool_tokens(completion)

        history = list(history)
        if source.type == GenerationType.CONTINUE and self.settings.continue_prefill:
            await self._prefill_continued_message(history, control_prompts, completion)

        absolute_prompts = [
            p for p in prompts if p.injection_position == InjectionPosition.ABSOLUTE
        ]
        absolute_prompts.extend(
            self.prepare_prompt(p) for p in extension_prompts_in_chat(source.extension_prompts)
        )
        history = inject_depth_prompts(
            absolute_prompts, history, separator=self.settings.injection_separator
        )

        if self.settings.pin_examples:
            await self.populate_dialogue_examples(examples, prompts, completion)
            await self.populate_chat_history(history, prompts, completion)
        else:
            await self.populate_chat_history(history, prompts, completion)
            await self.populate_dialogue_examples(examples, prompts, completion)

        completion.free_budget(control_prompts)
        if len(control_prompts):
            completion.add(control_prompts)

    async def _insert_anchored_prompts(self, prompts: PromptCollection, completion: ChatCompletion) -> None:
        """Insert extension prompts anchored to the start or end of the main prompt."""
        anchored = [
            p for p in prompts
            if (p.extension or p.identifier in KNOWN_EXTENSION_PROMPTS.values()) and p.position is not None
        ]
        if not anchored:
            return
        if not completion.has("main"):
            logger.warning(
                f"Main prompt is not part of the chat, skipping {len(anchored)} anchored prompt(s)"
            )
            return

        for prompt in anchored:
            message = await self.create_message(prompt.role, prompt.content, prompt.identifier)
            completion.insert(message, "main", prompt.position)

    async def assemble(self, dry_run: bool = False) -> PreparedChat:
        """Run the pipeline and return the assembled chat.

        Args:
            dry_run: Skip system message squashing, e.g. for previews

        Returns:
            The chat in wire format with its remaining budget and breakdown

        Raises:
            TokenBudgetExceeded: If mandatory prompts alone exceed the budget
            IdentifierNotFound: If a required prompt section is missing
        """
        completion = ChatCompletion()
        if app_settings.log_prompts:
            completion.enable_logging()

        completion.set_token_budget(self.settings.openai_max_context, self.settings.openai_max_tokens)

        history = format_chat_history(self.source, self.settings)
        examples = format_message_examples(self.source)

        try:
            prompts = self.prepare_prompts()
            await self.populate_chat_completion(prompts, completion, history, examples)
        except TokenBudgetExceeded as e:
            logger.error(f"Mandatory prompts exceed the context size: {e.identifier}")
            raise
        except IdentifierNotFound as e:
            logger.error(f"Prompt section missing from the completion: {e.identifier}")
            raise

        if self.settings.squash_system_messages and not dry_run:
            await completion.squash_system_messages()

        chat = completion.get_chat()
        logger.info(
            f"Assembled {len(chat)} messages for {self.source.character.name}, "
            f"{completion.token_budget} tokens left"
        )

        return PreparedChat(
            chat=chat,
            token_budget=completion.token_budget,
            token_breakdown=completion.get_token_breakdown(),
            overridden_prompts=completion.get_overridden_prompts(),
        )


async def prepare_chat_messages(
    source: PromptSource,
    prompt_settings: PromptSettings,
    token_counter: TokenCounter | None = None,
    fetcher: ImageFetcher | None = None,
    dry_run: bool = False,
) -> PreparedChat:
    """Assemble the chat for one generation request."""
    assembler = PromptAssembler(source, prompt_settings, token_counter, fetcher)
    return await assembler.assemble(dry_run=dry_run)
