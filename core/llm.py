import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from .knowledge import CATEGORIES, PRIORITIES
from .persona import PersonaConfig

log = logging.getLogger(__name__)

COMMAND_INSTRUCTION = "Reply only with the requested output. No preamble, no commentary."

TOOL_DEFINITIONS: List[dict] = [
    {
        "type": "function",
        "function": {
            "name": "create_idea",
            "description": "Save a strategic insight, product idea or business thought for later.",
            "parameters": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Short title, max 80 characters."},
                    "content": {"type": "string", "description": "Full description of the idea."},
                    "category": {"type": "string", "enum": list(CATEGORIES)},
                    "priority": {"type": "string", "enum": list(PRIORITIES)},
                    "tags": {"type": "array", "items": {"type": "string"}},
                    "remind_at": {
                        "type": "string",
                        "description": "Optional ISO 8601 timestamp for a follow-up reminder.",
                    },
                },
                "required": ["title", "content"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "search_ideas",
            "description": "Find previously captured ideas by meaning.",
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string"},
                    "limit": {"type": "integer", "minimum": 1, "maximum": 20},
                    "category": {"type": "string", "enum": list(CATEGORIES)},
                },
                "required": ["query"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "list_all_ideas",
            "description": "Overview of the user's captured ideas with per-category counts.",
            "parameters": {
                "type": "object",
                "properties": {"limit": {"type": "integer", "minimum": 1, "maximum": 50}},
            },
        },
    },
]


def tool_names() -> List[str]:
    return [tool["function"]["name"] for tool in TOOL_DEFINITIONS]


def parse_timestamp(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()
    except ValueError:
        log.warning("ignoring unparseable reminder time %r", value)
        return None


@dataclass
class Completion:
    text: str
    tool_calls: List[str] = field(default_factory=list)


class ToolExecutor:
    """Runs model-requested idea tools on behalf of one user."""

    def __init__(self, knowledge) -> None:
        self.knowledge = knowledge

    async def execute(self, name: str, arguments: Dict[str, Any], user_id, chat_id) -> str:
        if not self.knowledge.enabled:
            return json.dumps({"error": "idea storage is not enabled"})
        if name == "create_idea":
            return await self._create_idea(arguments, user_id, chat_id)
        if name == "search_ideas":
            return await self._search_ideas(arguments, user_id)
        if name == "list_all_ideas":
            return self._list_all_ideas(arguments, user_id)
        return json.dumps({"error": f"unknown tool {name}"})

    async def _create_idea(self, arguments: Dict[str, Any], user_id, chat_id) -> str:
        content = str(arguments.get("content") or "").strip()
        if not content:
            return json.dumps({"error": "content is required"})
        idea = await self.knowledge.capture_idea(
            content,
            str(user_id),
            chat_id,
            title=str(arguments.get("title") or "").strip()[:80] or "Manual Capture",
            category=arguments.get("category") if arguments.get("category") in CATEGORIES else None,
            priority=arguments.get("priority") if arguments.get("priority") in PRIORITIES else None,
            tags=[str(tag) for tag in arguments.get("tags") or []],
            remind_at=parse_timestamp(arguments.get("remind_at")),
            enhance=False,
        )
        if idea is None:
            return json.dumps({"error": "failed to save idea"})
        return json.dumps(
            {
                "id": idea.id,
                "title": idea.title,
                "category": idea.category,
                "priority": idea.priority,
                "reminders": len(idea.reminders),
            }
        )

    async def _search_ideas(self, arguments: Dict[str, Any], user_id) -> str:
        query = str(arguments.get("query") or "").strip()
        if not query:
            return json.dumps({"error": "query is required"})
        try:
            limit = max(1, min(20, int(arguments.get("limit") or 5)))
        except (TypeError, ValueError):
            limit = 5
        category = arguments.get("category") if arguments.get("category") in CATEGORIES else None
        try:
            results = await self.knowledge.search(query, str(user_id), limit, category)
        except Exception as exc:
            log.error("search_ideas tool failed for user %s: %s", user_id, exc)
            return json.dumps({"error": "search failed"})
        return json.dumps(
            {
                "results": [
                    {
                        "id": result.idea.id,
                        "title": result.idea.title,
                        "category": result.idea.category,
                        "priority": result.idea.priority,
                        "content": result.idea.content[:300],
                        "score": round(result.score, 3),
                    }
                    for result in results
                ]
            }
        )

    def _list_all_ideas(self, arguments: Dict[str, Any], user_id) -> str:
        try:
            limit = max(1, min(50, int(arguments.get("limit") or 20)))
        except (TypeError, ValueError):
            limit = 20
        ideas = self.knowledge.list_user_ideas(str(user_id), limit)
        return json.dumps(
            {
                "stats": self.knowledge.stats(str(user_id)),
                "ideas": [
                    {"id": idea.id, "title": idea.title, "category": idea.category, "priority": idea.priority}
                    for idea in ideas
                ],
            }
        )


class CompletionClient:
    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        model: str,
        persona: PersonaConfig,
        tool_executor: Optional[ToolExecutor] = None,
    ) -> None:
        self.client = client
        self.model = model
        self.persona = persona
        self.tool_executor = tool_executor

    def list_tools(self) -> List[str]:
        return tool_names() if self.tool_executor is not None else []

    def _system_prompt(
        self,
        *,
        tools_enabled: bool,
        is_command: bool,
        style_directive: Optional[str],
        context: Optional[str],
    ) -> str:
        segments = [self.persona.get_prompt(include_tools=tools_enabled)]
        if context:
            segments.append(f"Relevant strategic context from earlier ideas:\n{context}")
        if style_directive:
            segments.append(style_directive)
        if is_command:
            segments.append(COMMAND_INSTRUCTION)
        return "\n\n".join(segments)

    async def complete(
        self,
        message: str,
        history: Sequence[dict] = (),
        user_id=None,
        chat_id: Optional[int] = None,
        allow_tools: bool = False,
        is_command: bool = False,
        style_directive: Optional[str] = None,
        context: Optional[str] = None,
    ) -> Completion:
        tools_enabled = (
            allow_tools and self.tool_executor is not None and user_id is not None and chat_id is not None
        )
        messages = [
            {
                "role": "system",
                "content": self._system_prompt(
                    tools_enabled=tools_enabled,
                    is_command=is_command,
                    style_directive=style_directive,
                    context=context,
                ),
            }
        ]
        if not is_command:
            messages.extend(
                {"role": entry["role"], "content": entry["content"]}
                for entry in history
                if entry.get("content", "").strip()
            )
        messages.append({"role": "user", "content": message})
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": 0.2 if is_command else 0.67,
        }
        if not is_command:
            request["top_p"] = 0.9
        if tools_enabled:
            request["tools"] = TOOL_DEFINITIONS
        log.debug(
            "completion request chat=%s history=%d tools=%s command=%s",
            chat_id,
            len(messages) - 2,
            tools_enabled,
            is_command,
        )
        response = await self.client.chat.completions.create(**request)
        choice = response.choices[0].message
        calls = list(getattr(choice, "tool_calls", None) or [])
        if not calls:
            return Completion(text=(choice.content or "").strip())
        return await self._finish_with_tools(request, choice, calls, user_id, chat_id)

    async def _finish_with_tools(self, request: Dict[str, Any], choice, calls, user_id, chat_id) -> Completion:
        messages = list(request["messages"])
        messages.append(
            {
                "role": "assistant",
                "content": choice.content or "",
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.function.name, "arguments": call.function.arguments},
                    }
                    for call in calls
                ],
            }
        )
        executed: List[str] = []
        for call in calls:
            name = call.function.name
            try:
                arguments = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError:
                arguments = {}
            log.info("executing tool %s for user %s in chat %s", name, user_id, chat_id)
            try:
                result = await self.tool_executor.execute(name, arguments, user_id, chat_id)
            except Exception as exc:
                log.exception("tool %s failed: %s", name, exc)
                result = json.dumps({"error": str(exc)})
            executed.append(name)
            messages.append({"role": "tool", "tool_call_id": call.id, "content": result})
        follow_up = dict(request, messages=messages)
        response = await self.client.chat.completions.create(**follow_up)
        text = (response.choices[0].message.content or "").strip()
        return Completion(text=text, tool_calls=executed)
