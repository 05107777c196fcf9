"""MCP Vault Server - Main entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional

# MCP imports are optional - only needed when running the server
try:
    from mcp.server import Server  # pragma: no cover
    from mcp.server.lowlevel.helper_types import ReadResourceContents  # pragma: no cover
    from mcp.server.stdio import stdio_server  # pragma: no cover
    from mcp.types import (  # pragma: no cover
        Completion,
        GetPromptResult,
        Prompt,
        PromptArgument,
        PromptMessage,
        Resource,
        ResourceTemplate,
        TextContent,
        Tool,
        ToolAnnotations,
    )
    HAS_MCP = True  # pragma: no cover
except ImportError:
    HAS_MCP = False
    Server = None  # type: ignore
    Tool = None  # type: ignore
    TextContent = None  # type: ignore

from .auth import Authenticator, generate_token
from .config import VaultConfig, load_config
from .engine import VaultEngine
from .errors import AuthenticationError
from .models import CapabilityToken
from .prompts import PromptLibrary
from .tools import Dispatcher, make_tools

logger = logging.getLogger(__name__)

TOKEN_ENV = "MCP_VAULT_TOKEN"
INSTALL_HINT = "MCP package not installed. Install with: pip install mcp-vault[mcp]"


def configure_logging(verbose: bool = False) -> None:
    """Send log records to stderr; stdout carries the stdio transport."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def create_server(
    config: VaultConfig,
    token: CapabilityToken,
    engine: Optional[VaultEngine] = None,
) -> "Server":
    """Create and configure the MCP server for one authenticated token.

    Args:
        config: Vault configuration
        token: Token every request on this server is served for
        engine: Pre-built engine (default: built from config)

    Returns:
        Configured MCP Server instance

    Raises:
        ImportError: If MCP package is not installed
    """
    if not HAS_MCP:
        raise ImportError(INSTALL_HINT)

    server = Server(config.server_name, instructions=config.instructions)
    engine = engine or VaultEngine.from_config(config)
    dispatcher = Dispatcher(make_tools(engine, config.custom_tools))
    registry = engine.resources

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """Return the tools visible to the token."""
        return [
            Tool(
                name=t.name,
                description=t.description,
                inputSchema=t.input_schema,
                annotations=ToolAnnotations(**t.annotations) if t.annotations else None,
            )
            for t in dispatcher.registry.visible(token)
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool invocation."""
        result = await dispatcher.handle(name, token, arguments)
        return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

    @server.list_resources()
    async def list_resources() -> list[Resource]:
        return [
            Resource(uri=entry.uri, name=entry.name, mimeType=entry.mime_type, description=entry.description)
            for entry in await registry.list_resources(token)
        ]

    @server.list_resource_templates()
    async def list_resource_templates() -> list[ResourceTemplate]:
        return [
            ResourceTemplate(
                uriTemplate=d.uri_template,
                name=d.scheme,
                description=d.description,
                mimeType=d.mime_type,
            )
            for d in registry.visible(token)
        ]

    @server.read_resource()
    async def read_resource(uri) -> list[ReadResourceContents]:
        content = await registry.read(str(uri), token)
        return [ReadResourceContents(content=content.text, mime_type=content.mime_type)]

    @server.completion()
    async def completion(ref, argument, context) -> Optional[Completion]:
        template = getattr(ref, "uri", None)
        if not template:
            return None
        scheme = str(template).split(":", 1)[0]
        values = await registry.complete(scheme, argument.value, token)
        return Completion(values=values[:100], total=len(values), hasMore=len(values) > 100)

    if config.prompts_enabled:
        prompts = PromptLibrary(engine, config.prompts_folder, config.prompts_tier)

        @server.list_prompts()
        async def list_prompts() -> list[Prompt]:
            return [
                Prompt(
                    name=p.name,
                    description=p.description or None,
                    arguments=[PromptArgument(name=arg, required=True) for arg in p.arguments],
                )
                for p in await prompts.list_prompts(token)
            ]

        @server.get_prompt()
        async def get_prompt(name: str, arguments: Optional[dict[str, str]]) -> GetPromptResult:
            prompt = await prompts.get_prompt(name, token)
            return GetPromptResult(
                description=prompt.description or None,
                messages=[
                    PromptMessage(role="user", content=TextContent(type="text", text=prompt.render(arguments))),
                ],
            )

    logger.debug("Server %s ready for token %s", config.server_name, token.name)
    return server


async def run_server(config: VaultConfig, token: CapabilityToken) -> None:
    """Run the MCP server with stdio transport."""
    if not HAS_MCP:
        raise ImportError(INSTALL_HINT)

    server = create_server(config, token)  # pragma: no cover

    async with stdio_server() as (read_stream, write_stream):  # pragma: no cover
        await server.run(  # pragma: no cover
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="MCP Vault Server - Capability-scoped access to a markdown vault"
    )
    parser.add_argument(
        "--vault-root",
        "-r",
        type=Path,
        default=Path.cwd(),
        help="Vault root directory (default: current directory)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        help="Path to config file (default: auto-detect in vault root)",
    )
    parser.add_argument(
        "--token",
        "-t",
        default=os.environ.get(TOKEN_ENV),
        help=f"Access token to serve as (default: ${TOKEN_ENV})",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging on stderr",
    )
    parser.add_argument(
        "--generate-token",
        action="store_true",
        help="Print a new random token secret and exit",
    )

    args = parser.parse_args()

    if args.generate_token:
        print(generate_token())
        return

    vault_root = args.vault_root.resolve()

    # Check for MCP before loading config for server mode
    if not HAS_MCP:
        print(f"Error: {INSTALL_HINT}", file=sys.stderr)
        sys.exit(1)

    try:
        config = load_config(vault_root, args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    configure_logging(args.verbose or config.verbose)

    try:
        token = Authenticator(config.tokens).authenticate(args.token)
    except AuthenticationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    asyncio.run(run_server(config, token))


if __name__ == "__main__":  # pragma: no cover
    main()
