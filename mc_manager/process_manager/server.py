"""MCP Server exposing the server supervisor as tools over stdio or HTTP."""

from __future__ import annotations

from mcp.server.fastmcp import FastMCP

from mc_manager.process_manager.errors import SupervisorError
from mc_manager.process_manager.supervisor import DEFAULT_CAPTURE_WINDOW, ServerSupervisor

# Default port for the persistent HTTP daemon
DEFAULT_PORT = 8902

# Longest capture window a tool caller may ask for
MAX_CAPTURE_WINDOW = 30.0  # seconds


def _error(exc: SupervisorError) -> dict:
    return {"status": "error", "error": str(exc), "kind": type(exc).__name__}


def create_server(
    supervisor: ServerSupervisor,
    server_path: str,
    launch_command: str,
    port: int = DEFAULT_PORT,
) -> FastMCP:
    """Create and configure the MCP server for one supervised game server."""

    sv = supervisor

    mcp = FastMCP(
        name="mc-manager",
        instructions=(
            "Controls a single Minecraft server process. Use start_server to "
            "launch it, run_command to execute console commands and read their "
            "output, get_output to read recent console lines, stop_server for a "
            "graceful shutdown and kill_server only if it does not exit."
        ),
        host="127.0.0.1",
        port=port,
        stateless_http=True,
    )

    # ------------------------------------------------------------------
    # Tool: start_server
    # ------------------------------------------------------------------
    @mcp.tool()
    async def start_server() -> dict:
        """Start the server. Fails if it is already running.

        Returns as soon as the process is spawned; poll get_output to see
        when it has finished loading.
        """
        try:
            server = await sv.start(server_path, launch_command)
        except SupervisorError as exc:
            return _error(exc)
        return {"status": sv.state.value, "pid": server.pid}

    # ------------------------------------------------------------------
    # Tool: stop_server
    # ------------------------------------------------------------------
    @mcp.tool()
    async def stop_server() -> dict:
        """Send `stop` to the server console. Does not wait for it to exit."""
        try:
            sv.stop()
        except SupervisorError as exc:
            return _error(exc)
        return {"status": "stop_sent"}

    # ------------------------------------------------------------------
    # Tool: kill_server
    # ------------------------------------------------------------------
    @mcp.tool()
    async def kill_server() -> dict:
        """Forcibly kill the server and its child processes."""
        try:
            sv.kill()
        except SupervisorError as exc:
            return _error(exc)
        return {"status": "kill_sent"}

    # ------------------------------------------------------------------
    # Tool: run_command
    # ------------------------------------------------------------------
    @mcp.tool()
    async def run_command(
        command: str,
        window: float = DEFAULT_CAPTURE_WINDOW,
    ) -> dict:
        """Run a console command and return the lines printed in reply.

        Args:
            command: Console command without a leading slash (e.g. "list").
            window: Seconds to collect output for. Capped at 30.
        """
        window = min(max(window, 0.0), MAX_CAPTURE_WINDOW)
        try:
            result = await sv.run_command(command, window)
        except SupervisorError as exc:
            return _error(exc)
        return {
            "status": "ok",
            "command": result.command,
            "output": result.text,
            "line_count": result.line_count,
            "size": result.size,
        }

    # ------------------------------------------------------------------
    # Tool: send_raw
    # ------------------------------------------------------------------
    @mcp.tool()
    async def send_raw(text: str) -> dict:
        """Write a line to the server console without waiting for output."""
        try:
            sv.send_raw(text)
        except SupervisorError as exc:
            return _error(exc)
        return {"status": "sent"}

    # ------------------------------------------------------------------
    # Tool: server_status
    # ------------------------------------------------------------------
    @mcp.tool()
    async def server_status() -> dict:
        """Return state, PID, launch command and uptime of the server."""
        return sv.status()

    # ------------------------------------------------------------------
    # Tool: get_output
    # ------------------------------------------------------------------
    @mcp.tool()
    async def get_output(tail: int = 50) -> dict:
        """Get the most recent console lines (stdout and stderr, interleaved).

        Args:
            tail: Number of lines to return. Defaults to 50.
        """
        lines = sv.recent_output(tail)
        return {"status": sv.state.value, "lines": lines}

    return mcp
