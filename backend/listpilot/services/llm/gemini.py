"""Google Gemini LLM provider."""

import logging
import uuid

from google import genai
from google.genai import types

from listpilot.core.config import settings
from listpilot.core.errors import UpstreamFailure
from listpilot.services.llm.base import BaseLLMProvider, LLMResponse, Message, ToolCall, Usage

logger = logging.getLogger(__name__)


def _to_contents(messages: list[Message]) -> tuple[list[types.Content], str | None]:
    """Convert history into Gemini contents plus a merged system instruction."""
    contents: list[types.Content] = []
    system_parts: list[str] = []

    for m in messages:
        if m.role == "system":
            system_parts.append(m.content)
        elif m.role == "tool":
            contents.append(types.Content(role="user", parts=[
                types.Part(function_response=types.FunctionResponse(
                    id=m.tool_call_id,
                    name=m.name or "tool",
                    response={"result": m.content},
                ))
            ]))
        elif m.role == "assistant" and m.tool_calls:
            parts = [types.Part(text=m.content)] if m.content else []
            parts += [
                types.Part(function_call=types.FunctionCall(id=tc.id, name=tc.name, args=tc.arguments))
                for tc in m.tool_calls
            ]
            contents.append(types.Content(role="model", parts=parts))
        else:
            role = "model" if m.role == "assistant" else "user"
            contents.append(types.Content(role=role, parts=[types.Part(text=m.content)]))

    return contents, "\n\n".join(system_parts) or None


class GeminiProvider(BaseLLMProvider):
    def __init__(self, api_key: str | None = None, model: str | None = None):
        self.api_key = api_key or settings.gemini_api_key
        self.model = model or settings.gemini_model
        self._client: genai.Client | None = None

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def chat(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        system_prompt: str | None = None,
    ) -> LLMResponse:
        contents, history_system = _to_contents(messages)
        system_instruction = "\n\n".join(p for p in (system_prompt, history_system) if p) or None
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            tools=[types.Tool(function_declarations=tools)] if tools else None,
        )

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=contents,
                config=config,
            )
        except Exception as e:
            logger.error(f"Gemini call failed: {e}")
            raise UpstreamFailure(f"gemini call failed: {e}") from e

        usage = Usage()
        if response.usage_metadata:
            usage = Usage(
                prompt_tokens=response.usage_metadata.prompt_token_count or 0,
                completion_tokens=response.usage_metadata.candidates_token_count or 0,
                total_tokens=response.usage_metadata.total_token_count or 0,
            )

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        if response.candidates and response.candidates[0].content and response.candidates[0].content.parts:
            for part in response.candidates[0].content.parts:
                if part.function_call:
                    fc = part.function_call
                    tool_calls.append(ToolCall(
                        id=fc.id or f"call_{uuid.uuid4().hex[:12]}",
                        name=fc.name,
                        arguments=dict(fc.args) if fc.args else {},
                    ))
                elif part.text:
                    text_parts.append(part.text)

        return LLMResponse(content="".join(text_parts), tool_calls=tool_calls or None, usage=usage)
