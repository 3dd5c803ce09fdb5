"""Run the server supervisor as a persistent MCP daemon over HTTP.

Usage:
    python -m mc_manager.process_manager --server-path DIR [--launch-command CMD]
        [--encoding ENC] [--port PORT] [--autostart]

The daemon owns the game server process; chat and exit events go to the
log.  On SIGINT/SIGTERM it sends `stop` and kills the server if it is still
up after --stop-timeout seconds.
"""

import argparse
import asyncio
import logging
import signal
from pathlib import Path

import uvicorn

from mc_manager.broadcaster import LoggingBroadcaster
from mc_manager.config import DEFAULT_LAUNCH_COMMAND
from mc_manager.process_manager.errors import SupervisorError
from mc_manager.process_manager.server import DEFAULT_PORT, create_server
from mc_manager.process_manager.supervisor import ServerSupervisor, shutdown

log = logging.getLogger(__name__)


async def _run(args: argparse.Namespace) -> None:
    supervisor = ServerSupervisor(
        broadcaster=LoggingBroadcaster(),
        encoding=args.encoding,
    )
    server_path = str(args.server_path.expanduser().resolve())
    server = create_server(
        supervisor=supervisor,
        server_path=server_path,
        launch_command=args.launch_command,
        port=args.port,
    )

    if args.autostart:
        try:
            await supervisor.start(server_path, args.launch_command)
        except SupervisorError:
            log.exception("Autostart failed")

    # Run uvicorn in the same event loop so the supervisor's async
    # tasks (stream readers, exit waiter) stay alive.
    app = server.streamable_http_app()
    config = uvicorn.Config(
        app, host="127.0.0.1", port=args.port, log_level="info",
    )
    uvi = uvicorn.Server(config)

    # Use _serve() instead of serve() to bypass uvicorn's
    # capture_signals() context manager, which would replace our handlers.
    shutdown_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown_requested.set)

    serve_task = asyncio.create_task(uvi._serve())

    # Block until a signal arrives
    await shutdown_requested.wait()
    log.info("Signal received — shutting down")

    uvi.should_exit = True
    await serve_task
    log.info("Stopping game server")
    await shutdown(supervisor, args.stop_timeout)


def main() -> None:
    parser = argparse.ArgumentParser(description="Minecraft server MCP daemon")
    parser.add_argument(
        "--server-path", type=Path, required=True,
        help="Server root directory (working directory of the launch command)",
    )
    parser.add_argument(
        "--launch-command", default=DEFAULT_LAUNCH_COMMAND,
        help=f"Command run through the shell to start the server (default: {DEFAULT_LAUNCH_COMMAND})",
    )
    parser.add_argument(
        "--encoding", default="utf-8",
        help="Text encoding of the server console (default: utf-8)",
    )
    parser.add_argument(
        "--port", type=int, default=DEFAULT_PORT,
        help=f"Port to listen on (default: {DEFAULT_PORT})",
    )
    parser.add_argument(
        "--stop-timeout", type=float, default=60.0,
        help="Seconds to wait after `stop` before killing the server (default: 60)",
    )
    parser.add_argument(
        "--autostart", action="store_true",
        help="Start the game server as soon as the daemon is up",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [mc-manager] %(levelname)s %(message)s",
    )

    log.info("Starting mc-manager on http://127.0.0.1:%d/mcp", args.port)
    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
