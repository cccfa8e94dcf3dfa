"""MCP server exposing checkpoint operations to AI coding agents.

Tools exposed:
- setup_checkpoints: create .checkpoints, default config, .gitignore entry
- create_checkpoint: snapshot the current project files
- list_checkpoints: list snapshots, newest first
- restore_checkpoint: restore by name or partial name (emergency backup first)
- get_changelog: recent checkpoint history
- set_changelog: add a custom history entry

Every tool answers with a single text block. Failures are reported in that
text rather than raised, so a bad call never tears down the stdio session.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from checkpoint.manager import CheckpointManager, format_size, format_timestamp

logger = logging.getLogger(__name__)

CHANGELOG_SHOWN = 10


class CheckpointMCPServer:
    """Thin adapter from MCP tool calls to a CheckpointManager."""

    def __init__(self, project_path=None, manager: Optional[CheckpointManager] = None):
        self.manager = manager or CheckpointManager(project_path)
        self.server = Server("checkpoint")
        self._register_tools()

    def tools(self) -> List[Tool]:
        return [
            Tool(
                name="create_checkpoint",
                description="Create a new checkpoint of the current codebase",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "name": {
                            "type": "string",
                            "description": "Optional custom name for the checkpoint",
                        },
                        "description": {
                            "type": "string",
                            "description": "Description of what this checkpoint represents",
                        },
                    },
                },
            ),
            Tool(
                name="list_checkpoints",
                description="List all available checkpoints in the current project",
                inputSchema={"type": "object", "properties": {}},
            ),
            Tool(
                name="restore_checkpoint",
                description="Restore a previous checkpoint (creates emergency backup first)",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "checkpoint": {
                            "type": "string",
                            "description": "Name or partial name of the checkpoint to restore",
                        },
                        "dry_run": {
                            "type": "boolean",
                            "description": "Preview changes without actually restoring",
                            "default": False,
                        },
                    },
                    "required": ["checkpoint"],
                },
            ),
            Tool(
                name="setup_checkpoints",
                description="Set up checkpoints in the current project (creates .checkpoints dir, updates .gitignore)",
                inputSchema={"type": "object", "properties": {}},
            ),
            Tool(
                name="get_changelog",
                description="Get the history of checkpoint activity",
                inputSchema={"type": "object", "properties": {}},
            ),
            Tool(
                name="set_changelog",
                description="Add a custom entry to the history, e.g. to record what changes were made",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "description": {
                            "type": "string",
                            "description": "Brief description of what changes were made",
                        },
                        "details": {
                            "type": "string",
                            "description": "Optional detailed explanation of the changes",
                        },
                        "action_type": {
                            "type": "string",
                            "description": "Type of action (e.g., REFACTOR, ADD_FEATURE, BUG_FIX, OPTIMIZATION)",
                            "default": "CODE_CHANGE",
                        },
                    },
                    "required": ["description"],
                },
            ),
        ]

    def _register_tools(self):
        """Register tool listing and dispatch with the MCP server."""

        @self.server.list_tools()
        async def list_tools() -> List[Tool]:
            return self.tools()

        @self.server.call_tool()
        async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
            return [TextContent(type="text", text=self.dispatch(name, arguments))]

    def dispatch(self, name: str, arguments: Optional[Dict[str, Any]]) -> str:
        """Run one tool call and return its text answer."""
        args = arguments or {}
        try:
            if name == "create_checkpoint":
                return self._tool_create(args.get("name"), args.get("description"))
            if name == "list_checkpoints":
                return self._tool_list()
            if name == "restore_checkpoint":
                return self._tool_restore(args.get("checkpoint", ""), bool(args.get("dry_run", False)))
            if name == "setup_checkpoints":
                return self._tool_setup()
            if name == "get_changelog":
                return self._tool_get_changelog()
            if name == "set_changelog":
                return self._tool_set_changelog(
                    args.get("description"),
                    args.get("details"),
                    args.get("action_type") or "CODE_CHANGE",
                )
            return f"Error: Unknown tool: {name}"
        except Exception as e:
            logger.exception("Tool %s failed", name)
            return f"Error: {e}"

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def _tool_create(self, name, description):
        result = self.manager.create(name, description)
        if not result["success"]:
            if result["code"] == "NO_FILES_FOUND":
                return (
                    "No files found to checkpoint! Make sure you're in a project "
                    "directory and run setup_checkpoints first."
                )
            return f"Failed to create checkpoint: {result['error']}"
        return (
            f"Checkpoint created: {result['name']}\n"
            f"   Files: {result['file_count']}\n"
            f"   Size: {result['size']}\n"
            f"   Description: {result['description'] or 'Manual checkpoint'}"
        )

    def _tool_list(self):
        checkpoints = self.manager.get_checkpoints()
        if not checkpoints:
            return "No checkpoints found. Create your first checkpoint with create_checkpoint!"

        lines = [f"Available checkpoints ({len(checkpoints)}):", ""]
        for i, cp in enumerate(checkpoints, 1):
            lines.append(f"{i}. {cp.name}")
            lines.append(f"   {cp.description or ''}")
            lines.append(
                f"   {format_timestamp(cp.timestamp)} | {cp.file_count} files | {format_size(cp.total_size)}"
            )
            lines.append("")
        return "\n".join(lines).rstrip()

    def _tool_restore(self, identifier, dry_run):
        result = self.manager.restore(identifier, dry_run=dry_run)
        if not result["success"]:
            if result["code"] == "CHECKPOINT_NOT_FOUND":
                available = "\n".join(f"  - {n}" for n in result["available"])
                return f"{result['error']}\n\nAvailable checkpoints:\n{available}"
            text = f"Failed to restore checkpoint: {result['error']}"
            if result.get("emergency_backup"):
                text += f"\n   Your previous state is saved as: {result['emergency_backup']}"
            return text

        if dry_run:
            cp = result["checkpoint"]
            lines = [
                f"DRY RUN - Would restore: {cp['name']}",
                f"   Description: {cp['description'] or ''}",
                f"   Date: {format_timestamp(cp['timestamp'])}",
                f"   Files: {cp['fileCount']}",
            ]
            if result["would_delete"]:
                lines.append(
                    f"   Would delete {result['would_delete']} files that didn't exist in checkpoint"
                )
            lines += ["", "Use restore_checkpoint without dry_run to proceed."]
            return "\n".join(lines)

        return (
            "Checkpoint restored successfully!\n"
            f"   Emergency backup created: {result['emergency_backup'] or 'none (project was empty)'}\n"
            f"   Restored: {result['restored']}\n"
            f"   Files restored: {result['file_count']}"
        )

    def _tool_setup(self):
        result = self.manager.setup()
        if not result["success"]:
            return f"Setup failed: {result['error']}"

        lines = ["Checkpoint setup complete!", "", "Created .checkpoints directory"]
        if result["gitignore_updated"]:
            lines.append("Updated .gitignore")
        lines.append("Created configuration")
        if result["initial_checkpoint"]:
            lines.append(f"Created initial checkpoint: {result['initial_checkpoint']}")
        lines += [
            "",
            "Quick commands:",
            "  - create_checkpoint - Create a new checkpoint",
            "  - list_checkpoints - See all checkpoints",
            "  - restore_checkpoint - Restore a previous state",
            "  - get_changelog - View history",
        ]
        return "\n".join(lines)

    def _tool_get_changelog(self):
        entries = self.manager.get_changelog()
        if not entries:
            return "No history found. Start creating checkpoints to build your project timeline!"

        lines = [f"History ({len(entries)} entries):", ""]
        for i, entry in enumerate(entries[:CHANGELOG_SHOWN], 1):
            lines.append(f"{i}. **{entry.get('action', '')}** - {entry.get('timestamp', '')}")
            lines.append(f"   {entry.get('description', '')}")
            if entry.get("details"):
                lines.append(f"   _{entry['details']}_")
            lines.append("")
        if len(entries) > CHANGELOG_SHOWN:
            lines.append(
                f"... and {len(entries) - CHANGELOG_SHOWN} more entries. "
                "Use 'checkpoint changelog' for full history."
            )
        return "\n".join(lines).rstrip()

    def _tool_set_changelog(self, description, details, action_type):
        if not description:
            return "Error: Description is required for changelog entry"
        if self.manager.log_to_changelog(action_type, description, details) is None:
            return "Error adding changelog entry: could not write the changelog"
        return f"Changelog entry added: {description}"

    async def run(self):
        """Serve over stdio until the client disconnects."""
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream,
                write_stream,
                self.server.create_initialization_options(),
            )


def run_server(project_path=None):
    """Entry point for `checkpoint mcp`."""
    server = CheckpointMCPServer(project_path)
    asyncio.run(server.run())
