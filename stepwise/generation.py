"""
Generation

Text and structured-object generation on top of any LLMClient.

Tool use follows a plain JSON convention so it works with every provider:
the model replies with

    {"tool_calls": [{"tool": "grep_search", "pattern": "def main"}]}

the calls are executed, and their results come back as the next user
message. Structured output is validated against a pydantic model and
re-prompted with the validation error when it does not conform.
"""

import re
import json
import inspect
from typing import Any, Callable, Optional, Sequence, Type
from dataclasses import dataclass, field

from pydantic import BaseModel, ValidationError

from .errors import SchemaValidationError
from .llm_client import LLMClient, Message, TokenUsage
from .tools import ToolSpec


MAX_TOOL_CALLS_PER_ROUND = 5


@dataclass
class GenerationResult:
    """Outcome of a generate() call."""
    text: str
    object: Optional[BaseModel] = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""


# =============================================================================
# JSON extraction
# =============================================================================

def _first_balanced_object(text: str) -> Optional[str]:
    """First `{...}` span with balanced braces, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)
    return None


def extract_json(content: str) -> Any:
    """
    Pull a JSON value out of a model reply.

    Tries, in order: a ```json block, any fenced block, the whole text, and
    the first balanced `{...}`.

    Raises:
        ValueError: if none of them parses
    """
    candidates = []

    # Strategy 1: ```json ... ``` block
    match = re.search(r'```json\s*([\s\S]*?)\s*```', content)
    if match:
        candidates.append(match.group(1).strip())

    # Strategy 2: any ``` ... ``` block
    match = re.search(r'```[a-zA-Z]*\s*([\s\S]*?)\s*```', content)
    if match:
        candidates.append(match.group(1).strip())

    # Strategy 3: the whole content
    candidates.append(content.strip())

    # Strategy 4: first balanced object
    balanced = _first_balanced_object(content)
    if balanced:
        candidates.append(balanced)

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    raise ValueError("No JSON object found in response")


def parse_tool_calls(content: str) -> list[dict]:
    """
    Tool calls requested in a model reply, in order.

    Accepts `{"tool_calls": [...]}` inside ```json or bare fenced blocks, a
    `<tool_calls>[...]</tool_calls>` block, or as raw JSON in the text.
    """
    calls: list[dict] = []

    for block in re.findall(r'<tool_calls>\s*([\s\S]*?)\s*</tool_calls>', content):
        try:
            parsed = json.loads(block.strip())
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, list):
            calls.extend(c for c in parsed if isinstance(c, dict))
        elif isinstance(parsed, dict) and parsed.get("tool"):
            calls.append(parsed)

    for block in re.findall(r'```(?:json)?\s*([\s\S]*?)\s*```', content):
        block = block.strip()
        if not block.startswith("{"):
            continue
        try:
            parsed = json.loads(block)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict) and isinstance(parsed.get("tool_calls"), list):
            calls.extend(c for c in parsed["tool_calls"] if isinstance(c, dict))

    if not calls and '"tool_calls"' in content:
        start = content.rfind("{", 0, content.find('"tool_calls"'))
        balanced = _first_balanced_object(content[start:]) if start != -1 else None
        if balanced:
            try:
                parsed = json.loads(balanced)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, dict) and isinstance(parsed.get("tool_calls"), list):
                calls.extend(c for c in parsed["tool_calls"] if isinstance(c, dict))

    return calls


# =============================================================================
# Tool loop
# =============================================================================

def format_tool_instructions(tools: Sequence[ToolSpec]) -> str:
    lines = [
        "## Tools",
        "",
        "To use tools, reply with ONLY a JSON block and then stop:",
        "",
        "```json",
        '{"tool_calls": [{"tool": "<tool name>", "<param>": "<value>"}]}',
        "```",
        "",
        f"At most {MAX_TOOL_CALLS_PER_ROUND} tool calls per reply. The results arrive in the next message.",
        "Never guess tool results. When you have enough information, reply with your final answer and no tool calls.",
        "",
        "Available tools:",
    ]
    for spec in tools:
        params = ", ".join(f"{name}: {desc}" for name, desc in spec.parameters.items())
        lines.append(f"- {spec.name}({params}): {spec.description}")
    return "\n".join(lines)


async def execute_tool_calls(
    tool_calls: list[dict],
    tools: Sequence[ToolSpec],
    on_status: Optional[Callable[[str], None]] = None,
) -> str:
    """Run each call and return the combined results as one message body."""
    by_name = {spec.name: spec for spec in tools}
    results = []
    for call in tool_calls:
        tool_name = call.get("tool", "")
        args = {k: v for k, v in call.items() if k != "tool"}
        spec = by_name.get(tool_name)
        if spec is None:
            result = f"Unknown tool: {tool_name}"
        else:
            if on_status:
                on_status(f"  → {tool_name}: {args}")
            try:
                result = spec.handler(**args)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                result = f"Tool error ({tool_name}): {e}"
        results.append(f"## Tool: {tool_name}\n{result}")
    return "\n\n".join(results)


async def generate(
    client: LLMClient,
    system_prompt: str,
    messages: list[Message],
    tools: Optional[Sequence[ToolSpec]] = None,
    tool_choice: str = "auto",
    max_steps: int = 10,
    schema: Optional[Type[BaseModel]] = None,
    schema_retries: int = 2,
    on_status: Optional[Callable[[str], None]] = None,
) -> GenerationResult:
    """
    Generate a reply, running tools for up to `max_steps` rounds.

    With `schema` set this delegates to generate_object() and tools are not
    offered. `tool_choice="none"` disables tools as well. Transport errors
    from the client propagate unchanged.
    """
    if schema is not None:
        return await generate_object(
            client, system_prompt, messages, schema,
            retries=schema_retries, on_status=on_status,
        )

    use_tools = bool(tools) and tool_choice != "none"
    prompt = system_prompt
    if use_tools:
        prompt = f"{system_prompt}\n\n{format_tool_instructions(tools)}"

    conversation = [Message("system", prompt)] + list(messages)
    usage = TokenUsage()
    model = ""

    for _ in range(max(1, max_steps)):
        response = await client.chat(conversation)
        usage = usage.add(response.token_usage)
        model = response.model

        tool_calls = parse_tool_calls(response.content) if use_tools else []
        if not tool_calls:
            return GenerationResult(text=response.content, usage=usage, model=model)

        if len(tool_calls) > MAX_TOOL_CALLS_PER_ROUND:
            if on_status:
                on_status(f"[Tools] {len(tool_calls)} tool calls requested, limiting to first {MAX_TOOL_CALLS_PER_ROUND}")
            tool_calls = tool_calls[:MAX_TOOL_CALLS_PER_ROUND]

        tool_results = await execute_tool_calls(tool_calls, tools, on_status=on_status)
        conversation.append(Message("assistant", response.content))
        conversation.append(Message("user", f"Tool results:\n\n{tool_results}"))

    # Out of rounds: one last call for a final answer
    conversation.append(Message(
        "user",
        "You have used all available tool rounds. Do not call any more tools. "
        "Give your final answer now based on the results so far.",
    ))
    response = await client.chat(conversation)
    usage = usage.add(response.token_usage)
    return GenerationResult(text=response.content, usage=usage, model=response.model or model)


# =============================================================================
# Structured output
# =============================================================================

def format_schema_instructions(schema: Type[BaseModel]) -> str:
    schema_json = json.dumps(schema.model_json_schema(by_alias=True), indent=2)
    return (
        "## Output Format\n\n"
        "Respond with a single JSON object that conforms to this JSON Schema. "
        "Use the property names exactly as written. No prose outside the JSON.\n\n"
        f"```json\n{schema_json}\n```"
    )


async def generate_object(
    client: LLMClient,
    system_prompt: str,
    messages: list[Message],
    schema: Type[BaseModel],
    retries: int = 2,
    on_status: Optional[Callable[[str], None]] = None,
) -> GenerationResult:
    """
    Generate and validate a structured object.

    The reply is re-requested with the validation error up to `retries`
    times.

    Raises:
        SchemaValidationError: no attempt produced a conforming object
    """
    prompt = f"{system_prompt}\n\n{format_schema_instructions(schema)}"
    conversation = [Message("system", prompt)] + list(messages)
    usage = TokenUsage()
    last_text = ""
    last_error = ""

    for attempt in range(retries + 1):
        response = await client.chat(conversation)
        usage = usage.add(response.token_usage)
        last_text = response.content

        try:
            data = extract_json(last_text)
            obj = schema.model_validate(data)
            return GenerationResult(text=last_text, object=obj, usage=usage, model=response.model)
        except (ValueError, ValidationError) as e:
            last_error = str(e)

        if attempt < retries:
            if on_status:
                on_status(f"[Schema] Response did not match {schema.__name__}, retrying ({attempt + 1}/{retries})")
            conversation.append(Message("assistant", last_text))
            conversation.append(Message(
                "user",
                f"Your response did not match the required schema:\n\n{last_error}\n\n"
                "Respond again with ONLY the corrected JSON object.",
            ))

    raise SchemaValidationError(
        f"No object generated: response did not match {schema.__name__} after "
        f"{retries + 1} attempt(s): {last_error}",
        text=last_text,
    )
