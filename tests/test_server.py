"""Tests for MCP server module."""

import json
import sys
from unittest.mock import patch

import pytest

from mcp_vault.config import VaultConfig
from mcp_vault.engine import VaultEngine
from mcp_vault.repository import MemoryRepository

from conftest import SAMPLE_DOCUMENTS, fixed_clock


requires_mcp = pytest.mark.skipif(
    not __import__('mcp_vault.server', fromlist=['HAS_MCP']).HAS_MCP,
    reason="MCP not installed"
)


@pytest.fixture
def config(temp_vault):
    return VaultConfig(vault_root=temp_vault)


@pytest.fixture
def memory_engine(daily_provider):
    return VaultEngine(MemoryRepository(dict(SAMPLE_DOCUMENTS)), daily_notes=daily_provider, clock=fixed_clock)


class TestServerImports:
    """Test server module imports and HAS_MCP flag."""

    def test_server_imports_without_mcp(self):
        """Test server can be imported even without MCP."""
        import mcp_vault.server as server_module
        assert hasattr(server_module, 'HAS_MCP')
        assert hasattr(server_module, 'create_server')
        assert hasattr(server_module, 'run_server')
        assert hasattr(server_module, 'main')


class TestCreateServer:
    """Tests for create_server function."""

    def test_create_server_without_mcp_raises(self, config, restricted_token):
        """create_server raises ImportError when MCP not available."""
        import mcp_vault.server as server_module

        with patch.object(server_module, "HAS_MCP", False):
            with pytest.raises(ImportError, match="MCP package not installed"):
                server_module.create_server(config, restricted_token)

    @requires_mcp
    def test_create_server_with_mcp(self, config, restricted_token):
        from mcp_vault.server import create_server
        server = create_server(config, restricted_token)
        assert server is not None

    @requires_mcp
    @pytest.mark.asyncio
    async def test_list_tools_is_scoped_to_token(self, config, memory_engine, restricted_token):
        from mcp import types
        from mcp_vault.server import create_server

        server = create_server(config, restricted_token, engine=memory_engine)
        handler = server.request_handlers[types.ListToolsRequest]
        result = await handler(types.ListToolsRequest(method="tools/list"))

        assert [t.name for t in result.root.tools] == ["get_contents", "list_files", "get_daily_note"]

    @requires_mcp
    @pytest.mark.asyncio
    async def test_call_tool_returns_json(self, config, memory_engine, restricted_token):
        from mcp import types
        from mcp_vault.server import create_server

        server = create_server(config, restricted_token, engine=memory_engine)
        handler = server.request_handlers[types.CallToolRequest]
        request = types.CallToolRequest(
            method="tools/call",
            params=types.CallToolRequestParams(name="get_contents", arguments={"uri": "README.md"}),
        )
        result = await handler(request)

        payload = json.loads(result.root.content[0].text)
        assert payload["success"] is True
        assert payload["content"].startswith("# Vault")

    @requires_mcp
    @pytest.mark.asyncio
    async def test_read_resource(self, config, memory_engine, restricted_token):
        from mcp import types
        from mcp_vault.server import create_server

        server = create_server(config, restricted_token, engine=memory_engine)
        handler = server.request_handlers[types.ReadResourceRequest]
        request = types.ReadResourceRequest(
            method="resources/read",
            params=types.ReadResourceRequestParams(uri="daily:///yesterday"),
        )
        result = await handler(request)

        assert result.root.contents[0].text == "yesterday's note\n"

    @requires_mcp
    @pytest.mark.asyncio
    async def test_prompts(self, config, daily_provider, restricted_token):
        from mcp import types
        from mcp_vault.server import create_server

        documents = {
            "prompts/review.md": "---\nname: review\ndescription: Review a file\nargs: [file]\n---\nReview {{file}}.\n",
            "README.md": "# Vault\n",
        }
        engine = VaultEngine(MemoryRepository(documents), daily_notes=daily_provider, clock=fixed_clock)
        server = create_server(config, restricted_token, engine=engine)

        listed = await server.request_handlers[types.ListPromptsRequest](
            types.ListPromptsRequest(method="prompts/list")
        )
        prompt = listed.root.prompts[0]
        assert [p.name for p in listed.root.prompts] == ["review"]
        assert prompt.description == "Review a file"
        assert [(a.name, a.required) for a in prompt.arguments] == [("file", True)]

        request = types.GetPromptRequest(
            method="prompts/get",
            params=types.GetPromptRequestParams(name="review", arguments={"file": "README.md"}),
        )
        result = await server.request_handlers[types.GetPromptRequest](request)

        assert result.root.description == "Review a file"
        assert result.root.messages[0].role == "user"
        assert result.root.messages[0].content.text == "Review README.md."

    @requires_mcp
    def test_prompts_disabled(self, temp_vault, memory_engine, restricted_token):
        from mcp import types
        from mcp_vault.server import create_server

        config = VaultConfig(vault_root=temp_vault, prompts_enabled=False)
        server = create_server(config, restricted_token, engine=memory_engine)
        assert types.ListPromptsRequest not in server.request_handlers


class TestRunServer:
    """Tests for run_server function."""

    @pytest.mark.asyncio
    async def test_run_server_without_mcp_raises(self, config, restricted_token):
        import mcp_vault.server as server_module

        with patch.object(server_module, "HAS_MCP", False):
            with pytest.raises(ImportError, match="MCP package not installed"):
                await server_module.run_server(config, restricted_token)


class TestMain:
    """Tests for the command line entry point."""

    def test_generate_token(self, capsys):
        from mcp_vault.server import main

        with patch.object(sys, "argv", ["mcp-vault", "--generate-token"]):
            main()

        token = capsys.readouterr().out.strip()
        assert len(token) >= 40

    def test_main_without_mcp_exits(self, temp_vault):
        import mcp_vault.server as server_module

        with patch.object(server_module, "HAS_MCP", False):
            with patch.object(sys, "argv", ["mcp-vault", "--vault-root", str(temp_vault)]):
                with pytest.raises(SystemExit) as exc_info:
                    server_module.main()
        assert exc_info.value.code == 1

    @requires_mcp
    def test_main_rejects_unknown_token(self, temp_vault, capsys):
        from mcp_vault.server import main

        (temp_vault / "vault_config.json").write_text(json.dumps({
            "tokens": [{"name": "t", "token": "right", "tier": "full"}],
        }))
        argv = ["mcp-vault", "--vault-root", str(temp_vault), "--token", "wrong"]
        with patch.object(sys, "argv", argv):
            with pytest.raises(SystemExit) as exc_info:
                main()

        assert exc_info.value.code == 1
        assert "Invalid access token" in capsys.readouterr().err

    @requires_mcp
    def test_main_reports_bad_config(self, temp_vault, capsys):
        from mcp_vault.server import main

        (temp_vault / "vault_config.json").write_text("{broken")
        with patch.object(sys, "argv", ["mcp-vault", "--vault-root", str(temp_vault)]):
            with pytest.raises(SystemExit):
                main()

        assert "Error loading config" in capsys.readouterr().err
