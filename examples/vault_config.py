"""MCP Vault Configuration - Advanced Python Example

Copy to your vault root as vault_config.py for full extensibility.

Convention:
- CONFIG dict for static configuration (same structure as TOML)
- Functions named custom_tool_* become MCP tools, called as
  func(engine, token, params); they need a full-access token unless
  they carry a required_tier attribute
"""

# =============================================================================
# Static Configuration (same structure as TOML)
# =============================================================================

CONFIG = {
    "server": {
        "name": "personal-vault",
    },
    "daily_notes": {
        "enabled": True,
        "format": "YYYY-MM-DD",
        "folder": "Daily",
        # Live settings written by the editor; used while the file exists
        "settings_files": [".obsidian/daily-notes.json"],
    },
    # Notes below this folder are served as MCP prompts
    "prompts": {
        "folder": "Prompts",
    },
    "tokens": [
        {
            "name": "assistant",
            "token_env": "VAULT_ASSISTANT_TOKEN",
            "tier": "full",
            "directories": [
                {"path": "/", "allowed": True},
                {"path": "Private", "allowed": False},
            ],
        },
        {
            "name": "reader",
            "token_env": "VAULT_READER_TOKEN",
            "tier": "restricted",
            "root_permission": False,
            "directories": [
                {"path": "Daily", "allowed": True},
                {"path": "Projects/Public", "allowed": True},
            ],
        },
    ],
}


# =============================================================================
# Custom Tools - Exposed as additional MCP tools
# =============================================================================

async def custom_tool_word_count(engine, token, params) -> dict:
    """Count words in the documents of a folder visible to the caller."""
    folder = (params.get("folder") or "").strip("/")
    total = 0
    counted = 0
    for path in await engine.visible_documents(token):
        if folder and not path.startswith(folder + "/"):
            continue
        total += len((await engine.repository.read(path)).split())
        counted += 1
    return {"success": True, "documents": counted, "words": total}


custom_tool_word_count.required_tier = "read_only"


async def custom_tool_inbox(engine, token, params) -> dict:
    """Append a line to Inbox.md, creating it if needed."""
    text = params.get("text", "").strip()
    if not text:
        return {"success": False, "error": "Nothing to capture", "error_type": "invalid_arguments"}
    message = await engine.append_content("Inbox.md", f"- {text}", token, create_if_missing=True)
    return {"success": True, "message": message}
