"""MCP Server for the smart email engine."""
import asyncio
import json
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from smart_email.db import init_db
from smart_email.errors import SmartEmailError
from smart_email.models import EmailDraft
from smart_email.services import get_email_reviewer, get_smart_email_service

# Create MCP server
server = Server("smart-email-engine")

IDENTITY_PROPERTIES = {
    "organization_id": {"type": "string", "description": "Organization the caller acts for"},
    "user_id": {"type": "string", "description": "The calling user"},
}


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [
        Tool(
            name="start_email_session",
            description="Start a conversation that turns a request into an approved instruction for personalized donor emails.",
            inputSchema={
                "type": "object",
                "properties": {
                    **IDENTITY_PROPERTIES,
                    "donor_ids": {
                        "type": "array",
                        "items": {"type": "integer"},
                        "description": "Donors the emails are for",
                    },
                    "instruction": {
                        "type": "string",
                        "description": "What the emails should achieve (e.g., 'Thank lapsed donors and invite them to the spring gala')",
                    },
                },
                "required": ["organization_id", "user_id", "donor_ids", "instruction"],
            },
        ),
        Tool(
            name="continue_email_session",
            description="Send the next user message to an email session.",
            inputSchema={
                "type": "object",
                "properties": {
                    **IDENTITY_PROPERTIES,
                    "session_id": {"type": "string", "description": "The session ID returned from start_email_session"},
                    "message": {"type": "string"},
                },
                "required": ["organization_id", "user_id", "session_id", "message"],
            },
        ),
        Tool(
            name="get_email_session",
            description="Get the status, step and full message log of an email session.",
            inputSchema={
                "type": "object",
                "properties": {
                    **IDENTITY_PROPERTIES,
                    "session_id": {"type": "string"},
                },
                "required": ["organization_id", "user_id", "session_id"],
            },
        ),
        Tool(
            name="review_email",
            description="Check whether a generated email follows every instruction from the conversation.",
            inputSchema={
                "type": "object",
                "properties": {
                    "donor_id": {"type": "integer"},
                    "subject": {"type": "string"},
                    "content": {"type": "string"},
                    "instruction": {
                        "type": "string",
                        "default": "",
                        "description": "The finalized instruction the email was generated from",
                    },
                    "system_prompt": {"type": "string", "default": ""},
                    "donor_context": {"type": "string", "default": ""},
                    "chat_history": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {"role": {"type": "string"}, "content": {"type": "string"}},
                        },
                        "default": [],
                    },
                },
                "required": ["donor_id", "subject", "content"],
            },
        ),
    ]


def _text(payload: dict) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Handle tool calls."""
    handlers = {
        "start_email_session": handle_start_session,
        "continue_email_session": handle_continue_session,
        "get_email_session": handle_get_session,
        "review_email": handle_review_email,
    }
    handler = handlers.get(name)
    if handler is None:
        return [TextContent(type="text", text=f"Unknown tool: {name}")]
    try:
        return await handler(arguments)
    except SmartEmailError as e:
        return _text({"error": e.to_dict()})
    except KeyError as e:
        return [TextContent(type="text", text=f"Error: {e.args[0]} is required")]


async def handle_start_session(arguments: dict) -> list[TextContent]:
    """Handle start_email_session tool call."""
    result = await get_smart_email_service().start_session(
        arguments["organization_id"],
        arguments["user_id"],
        [int(i) for i in arguments["donor_ids"]],
        arguments["instruction"],
    )
    return _text(
        {
            "session_id": result.session_id,
            "current_step": result.current_step.value,
            "reply": result.response.content,
            "tools_used": [c.name for c in result.response.tool_calls],
        }
    )


async def handle_continue_session(arguments: dict) -> list[TextContent]:
    """Handle continue_email_session tool call."""
    result = await get_smart_email_service().continue_session(
        arguments["session_id"],
        arguments["message"],
        arguments["organization_id"],
        arguments["user_id"],
    )
    payload = {
        "current_step": result.current_step.value,
        "is_complete": result.is_complete,
        "reply": result.response.content,
        "tools_used": [c.name for c in result.response.tool_calls],
    }
    if result.final_instruction:
        payload["final_instruction"] = result.final_instruction
    return _text(payload)


async def handle_get_session(arguments: dict) -> list[TextContent]:
    """Handle get_email_session tool call."""
    state = get_smart_email_service().get_state(
        arguments["session_id"],
        arguments["organization_id"],
        arguments["user_id"],
    )
    return _text(state.model_dump(mode="json"))


async def handle_review_email(arguments: dict) -> list[TextContent]:
    """Handle review_email tool call."""
    verdict = await get_email_reviewer().review(
        arguments.get("system_prompt", ""),
        arguments.get("donor_context", ""),
        arguments.get("chat_history", []),
        EmailDraft(
            donor_id=arguments["donor_id"],
            subject=arguments["subject"],
            content=arguments["content"],
        ),
        instruction=arguments.get("instruction", ""),
    )
    return _text(verdict.model_dump(mode="json"))


async def main():
    """Run the MCP server."""
    init_db()
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


if __name__ == "__main__":
    asyncio.run(main())
