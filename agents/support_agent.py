from anthropic import Anthropic
from config import settings
from models.chat import ChatMessage, ChatRequest, SenderType
from processors.mention_parser import mentions_from_metadata, parse_mentions
from prompts.prompt_manager import PromptManager, prompt_manager
from services.database import DatabaseService
from agents.tools import SupportTool, build_tools
from typing import Any, Dict, Iterator, List, Optional
import logging

logger = logging.getLogger(__name__)

ROUND_SEPARATOR = "\n\n"


class SupportAgent:
    """
    Conversational assistant for support agents.

    Answers in a stream of text tokens, calling tools against the ticketing
    tables when needed. Each turn is persisted to ai_chat_messages: the user
    message before the model is called, the reply (with tool steps) once the
    stream completes.
    """

    def __init__(
        self,
        db: DatabaseService = None,
        prompts: PromptManager = None,
        client: Optional[Anthropic] = None,
    ):
        self.client = client or Anthropic(api_key=settings.ANTHROPIC_API_KEY)
        self.model = settings.AI_MODEL
        self.temperature = settings.AI_TEMPERATURE
        self.max_tokens = settings.AI_MAX_TOKENS
        self.max_iterations = settings.AI_MAX_ITERATIONS
        self.history_limit = settings.CHAT_HISTORY_LIMIT
        self.db = db or DatabaseService()
        self.prompts = prompts or prompt_manager

    def start_turn(self, request: ChatRequest) -> ChatMessage:
        """Persist the user message. Must succeed before the model is called."""
        logger.info(f"Chat message for session {request.session_id}: {request.message[:50]}...")
        return self.db.create_message(
            request.session_id,
            SenderType.USER,
            request.message,
            metadata=request.metadata or None,
        )

    def stream_reply(self, request: ChatRequest, user_message_id: Optional[str] = None) -> Iterator[str]:
        """
        Generate the reply to a user message as a stream of text tokens

        Runs up to max_iterations rounds of tool calls. If the model still
        wants tools after that, one last round is generated with tools
        disabled so the turn always ends in an answer.

        Args:
            request: The chat request (storage-form message plus metadata)
            user_message_id: ID of the persisted user message, excluded from history

        Yields:
            Text tokens in generation order
        """
        known_mentions = mentions_from_metadata(request.metadata)
        mentions = parse_mentions(request.message, known_mentions)

        tools = build_tools(self.db, request.supporter_id)
        tools_by_name = {tool.name: tool for tool in tools}
        tool_definitions = [tool.definition() for tool in tools]

        system = self.prompts.build_support_system_prompt(
            request.session_id, request.supporter_id, mentions
        )
        messages = self._build_messages(request, user_message_id)

        full_response: List[str] = []
        steps: List[Dict[str, Any]] = []

        try:
            for iteration in range(self.max_iterations + 1):
                final_round = iteration == self.max_iterations
                params = {
                    "model": self.model,
                    "max_tokens": self.max_tokens,
                    "temperature": self.temperature,
                    "system": system,
                    "messages": messages,
                    "tools": tool_definitions,
                }
                if final_round:
                    params["tool_choice"] = {"type": "none"}

                round_has_text = False
                with self.client.messages.stream(**params) as stream:
                    for text in stream.text_stream:
                        if not round_has_text and full_response:
                            full_response.append(ROUND_SEPARATOR)
                            yield ROUND_SEPARATOR
                        round_has_text = True
                        full_response.append(text)
                        yield text
                    final_message = stream.get_final_message()

                tool_uses = [block for block in final_message.content if block.type == "tool_use"]
                if final_round or final_message.stop_reason != "tool_use" or not tool_uses:
                    break

                messages.append({"role": "assistant", "content": final_message.content})
                tool_results = []
                for block in tool_uses:
                    output = self._run_tool(tools_by_name, block.name, block.input)
                    steps.append({"tool": block.name, "input": block.input, "output": output})
                    tool_results.append({
                        "type": "tool_result",
                        "tool_use_id": block.id,
                        "content": output,
                    })
                messages.append({"role": "user", "content": tool_results})

            self.db.create_message(
                request.session_id,
                SenderType.AI,
                "".join(full_response),
                metadata={"steps": steps},
            )
            logger.info(f"Reply stored for session {request.session_id} ({len(steps)} tool steps)")

        except Exception as e:
            logger.error(f"Error streaming reply for session {request.session_id}: {e}", exc_info=True)
            raise

    def _run_tool(self, tools_by_name: Dict[str, SupportTool], name: str, tool_input: Dict[str, Any]) -> str:
        tool = tools_by_name.get(name)
        if tool is None:
            logger.warning(f"Model requested unknown tool: {name}")
            return f"Error: Unknown tool {name}"

        logger.info(f"Running tool {name}")
        return tool.run(tool_input)

    def _build_messages(self, request: ChatRequest, user_message_id: Optional[str]) -> List[Dict[str, Any]]:
        """Session history plus the new message, as alternating user/assistant turns"""
        history = self.db.get_session_messages(request.session_id, limit=self.history_limit)

        turns = []
        for message in history:
            if message.id == user_message_id or not message.content:
                continue
            turns.append({
                "role": "user" if message.sender_type == SenderType.USER else "assistant",
                "content": message.content,
            })
        turns.append({"role": "user", "content": request.message})

        merged: List[Dict[str, Any]] = []
        for turn in turns:
            if not merged and turn["role"] == "assistant":
                continue
            if merged and merged[-1]["role"] == turn["role"]:
                merged[-1]["content"] += f"\n\n{turn['content']}"
            else:
                merged.append(dict(turn))

        return merged
