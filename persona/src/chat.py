"""
Persona chat - two calls per turn, two persona slots, observer mode.

Turn protocol:
    1. thinking call: system + last 4 history messages + thinking template
    2. reply call:    system + truncated history + user message
                      + assistant(thinking) + reply template
Both calls share the turn's cancellation token. The turn is appended to
the speaker's history only after both calls succeed.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Optional

from analysis.src.models import PhilosophyItem, StructuredAnalysis
from llm.src.cancellation import CancellationController, CancellationToken, OperationKind
from llm.src.client import ChatCompletionClient
from llm.src.errors import AbortedError, ConfigurationError, LLMError
from llm.src.models import ChatMessage, ChatOptions
from shared.config import SamplingProfile, Settings
from shared.logging import get_logger
from shared.prompts import PERSONA_SYSTEM_PROMPT, PromptTemplates, render

from .parameters import ParameterTable
from .prompt_builder import PersonaPrompt, build_persona_prompt

log = get_logger("persona", "chat")

# Context of the thinking call; independent of the persona's history budget
THINKING_WINDOW = 4

SLOT_NAMES = ("A", "B")

_THINKING_BLOCK = re.compile(r"<thinking>[\s\S]*?</thinking>")


class PersonaTurnError(LLMError):
    """One of the two calls of a persona turn failed."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"Conversation failed ({stage} stage): {cause}")
        self.stage = stage
        self.cause = cause


@dataclass
class PersonaSlot:
    """One participant: its item, filled templates and own history."""
    item: PhilosophyItem
    prompt: PersonaPrompt
    history: list[ChatMessage] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.item.name

    @property
    def code(self) -> str:
        return self.item.code


@dataclass
class TurnResult:
    thinking: str
    reply: str


@dataclass
class TranscriptEntry:
    """One half-turn of an observed dialogue."""
    slot: str
    speaker: str
    code: str
    message: str
    thinking: str


def strip_thinking(reply: str) -> str:
    return _THINKING_BLOCK.sub("", reply).strip()


class PersonaChat:
    """
    Conversation with up to two personas.

    Usage:
        chat = PersonaChat.from_settings(client, settings)
        chat.load_persona("A", item, analysis, settings.prompts)
        result = await chat.send("A", "What is the ground of being?")

        # two personas talking to each other
        chat.load_persona("B", other_item, other_analysis, settings.prompts)
        transcript = await chat.observe("Freedom and necessity")
    """

    def __init__(
        self,
        client: ChatCompletionClient,
        parameters: ParameterTable,
        *,
        thinking_sampling: SamplingProfile,
        system_prompt: str = PERSONA_SYSTEM_PROMPT,
        controller: Optional[CancellationController] = None,
        observer_max_turns: int = 10,
    ):
        self.client = client
        self.parameters = parameters
        self.thinking_sampling = thinking_sampling
        self.system_prompt = system_prompt
        self.controller = controller or CancellationController()
        self.observer_max_turns = observer_max_turns
        self.slots: dict[str, PersonaSlot] = {}

    @classmethod
    def from_settings(
        cls,
        client: ChatCompletionClient,
        settings: Settings,
        controller: Optional[CancellationController] = None,
    ) -> "PersonaChat":
        return cls(
            client,
            ParameterTable(settings.persona_parameters),
            thinking_sampling=settings.sampling_for("persona_thinking"),
            system_prompt=settings.prompts.persona_system,
            controller=controller,
            observer_max_turns=settings.observer_max_turns,
        )

    def load_persona(
        self,
        slot_name: str,
        item: PhilosophyItem,
        analysis: Optional[StructuredAnalysis],
        templates: PromptTemplates,
    ) -> PersonaSlot:
        """Put a persona into slot A or B with an empty history."""
        if slot_name not in SLOT_NAMES:
            raise ConfigurationError(f"Unknown persona slot {slot_name!r}")
        slot = PersonaSlot(item=item, prompt=build_persona_prompt(item, analysis, templates))
        self.slots[slot_name] = slot
        log.info("persona.chat.loaded", slot=slot_name, code=item.code, has_analysis=analysis is not None)
        return slot

    def slot(self, slot_name: str) -> PersonaSlot:
        slot = self.slots.get(slot_name)
        if slot is None:
            raise ConfigurationError(f"No persona loaded in slot {slot_name}")
        return slot

    async def run_turn(
        self,
        slot: PersonaSlot,
        message: str,
        token: Optional[CancellationToken] = None,
    ) -> TurnResult:
        """
        Run both calls of one turn without touching the history.

        Raises:
            PersonaTurnError: A call failed (stage "thinking" or "reply")
            AbortedError: The token fired during either call
        """
        params = self.parameters.resolve(slot.code)
        history = slot.history[-params.max_history_turns * 2:]
        system = {"role": "system", "content": self.system_prompt}

        thinking_messages = [system]
        thinking_messages.extend(m.to_api() for m in history[-THINKING_WINDOW:])
        thinking_messages.append(
            {"role": "user", "content": render(slot.prompt.thinking, userInput=message)}
        )
        try:
            thinking = await self.client.complete(
                thinking_messages,
                ChatOptions(
                    temperature=self.thinking_sampling.temperature,
                    top_p=self.thinking_sampling.top_p,
                    max_tokens=self.thinking_sampling.max_tokens,
                ),
                token=token,
            )
        except AbortedError:
            raise
        except LLMError as e:
            log.warning("persona.chat.thinking_failed", code=slot.code, error=str(e))
            raise PersonaTurnError("thinking", e) from e
        thinking = thinking.strip()

        reply_messages = [system]
        reply_messages.extend(m.to_api() for m in history)
        reply_messages.append({"role": "user", "content": message})
        reply_messages.append({"role": "assistant", "content": thinking})
        reply_messages.append({
            "role": "user",
            "content": render(slot.prompt.reply, userInput=message, thinking_content=thinking),
        })
        try:
            reply = await self.client.complete(
                reply_messages,
                ChatOptions(temperature=params.temperature, top_p=params.top_p),
                token=token,
            )
        except AbortedError:
            raise
        except LLMError as e:
            log.warning("persona.chat.reply_failed", code=slot.code, error=str(e))
            raise PersonaTurnError("reply", e) from e

        return TurnResult(thinking=thinking, reply=strip_thinking(reply))

    @staticmethod
    def commit(slot: PersonaSlot, message: str, result: TurnResult) -> None:
        slot.history.append(ChatMessage.user(message))
        slot.history.append(ChatMessage.model(result.reply, thinking=result.thinking))

    async def send(self, slot_name: str, message: str) -> TurnResult:
        """
        One user turn with the persona in `slot_name`.

        Starting a turn stops any conversation operation still running.
        """
        slot = self.slot(slot_name)
        message = (message or "").strip()
        if not message:
            raise ConfigurationError("Message is empty")

        async with self.controller.operation(OperationKind.CONVERSATION) as token:
            result = await self.run_turn(slot, message, token=token)
            # A turn cancelled right as it finished is not committed
            token.raise_if_cancelled()
            self.commit(slot, message, result)

        log.info("persona.chat.turn", slot=slot_name, code=slot.code, history=len(slot.history))
        return result

    async def observe(
        self,
        topic: str,
        max_turns: Optional[int] = None,
        on_turn: Optional[Callable[[TranscriptEntry], None]] = None,
    ) -> list[TranscriptEntry]:
        """
        Let persona A and persona B talk about `topic`.

        A speaks first. Each reply becomes the other persona's incoming
        message; each speaker commits its own turn. Stops after `max_turns`
        half-turns or when the conversation is cancelled, and returns the
        transcript so far. Turn failures propagate; committed turns stay.
        """
        speakers = [(name, self.slot(name)) for name in SLOT_NAMES]
        topic = (topic or "").strip()
        if not topic:
            raise ConfigurationError("Observer mode needs a topic")
        if max_turns is None:
            max_turns = self.observer_max_turns

        transcript: list[TranscriptEntry] = []
        incoming = topic

        async with self.controller.operation(OperationKind.CONVERSATION) as token:
            log.info("persona.chat.observe_start", topic=topic, max_turns=max_turns)
            for turn in range(max_turns):
                if token.cancelled:
                    break
                slot_name, slot = speakers[turn % 2]
                try:
                    result = await self.run_turn(slot, incoming, token=token)
                except AbortedError:
                    log.info("persona.chat.observe_stopped", turn=turn, reason=token.reason)
                    break

                self.commit(slot, incoming, result)
                entry = TranscriptEntry(
                    slot=slot_name,
                    speaker=slot.name,
                    code=slot.code,
                    message=result.reply,
                    thinking=result.thinking,
                )
                transcript.append(entry)
                if on_turn:
                    on_turn(entry)
                incoming = result.reply

        log.info("persona.chat.observe_end", turns=len(transcript))
        return transcript

    def stop(self) -> bool:
        """Stop the running turn or observed dialogue."""
        return self.controller.cancel(OperationKind.CONVERSATION)
