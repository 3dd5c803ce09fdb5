from __future__ import annotations

import asyncio
import logging

import discord
from discord import app_commands

from .broadcaster import QueueBroadcaster
from .config import Config
from .formatter import DiscordFormatter
from .process_manager import AlreadyRunning, NotRunning, ServerSupervisor, SupervisorError
from .process_manager.supervisor import shutdown
from .relay import relay_to_discord

log = logging.getLogger(__name__)

# Embed colour for bot system messages (green)
SYSTEM_COLOUR = discord.Colour(0x2ECC71)


def _system_embed(text: str) -> discord.Embed:
    """Build an embed for bot system messages."""
    return discord.Embed(description=f"⛏️ {text}", colour=SYSTEM_COLOUR)


class McManagerBot(discord.Client):
    def __init__(self, config: Config) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        super().__init__(intents=intents)

        self.config = config
        self.tree = app_commands.CommandTree(self)
        self.formatter = DiscordFormatter()
        self.broadcaster = QueueBroadcaster()
        self.supervisor = ServerSupervisor(
            broadcaster=self.broadcaster,
            encoding=config.console_encoding,
        )
        self._relay_task: asyncio.Task[None] | None = None

        self._register_commands()

    def _is_allowed(self, interaction: discord.Interaction) -> bool:
        return self.config.is_allowed(interaction.guild_id, interaction.user.id)

    def _ensure_relay(self, channel: discord.abc.Messageable) -> None:
        """Start posting server events to ``channel`` unless already doing so."""
        if self._relay_task is not None and not self._relay_task.done():
            return
        self._relay_task = asyncio.create_task(
            relay_to_discord(self.broadcaster.attach(), channel, self.formatter),
            name="discord-relay",
        )

    def _register_commands(self) -> None:
        @self.tree.command(name="start", description="Start the Minecraft server")
        async def cmd_start(interaction: discord.Interaction):
            if not self._is_allowed(interaction):
                await interaction.response.send_message(embed=_system_embed("Not authorized."), ephemeral=True)
                return

            try:
                server = await self.supervisor.start(
                    self.config.server_path, self.config.launch_command,
                )
            except AlreadyRunning as exc:
                await interaction.response.send_message(
                    embed=_system_embed(f"The server is already running (PID: {exc.pid}).")
                )
                return
            except SupervisorError as exc:
                await interaction.response.send_message(embed=_system_embed(str(exc)))
                return

            # Without a configured relay channel, events go where the server was started
            if self.config.relay_channel_id is None and interaction.channel is not None:
                self._ensure_relay(interaction.channel)

            await interaction.response.send_message(
                embed=_system_embed(
                    f"Starting server (PID: {server.pid}).\n"
                    f"This usually takes a minute or two."
                )
            )

        @self.tree.command(name="stop", description="Ask the server to shut down")
        async def cmd_stop(interaction: discord.Interaction):
            if not self._is_allowed(interaction):
                await interaction.response.send_message(embed=_system_embed("Not authorized."), ephemeral=True)
                return

            try:
                self.supervisor.stop()
            except NotRunning:
                await interaction.response.send_message(
                    embed=_system_embed("The server isn't running."), ephemeral=True
                )
                return
            except SupervisorError as exc:
                await interaction.response.send_message(embed=_system_embed(str(exc)))
                return

            await interaction.response.send_message(
                embed=_system_embed(
                    "Sent `stop` to the server. Use `/kill` if it doesn't go down."
                )
            )

        @self.tree.command(name="kill", description="Forcibly kill the server")
        async def cmd_kill(interaction: discord.Interaction):
            if not self._is_allowed(interaction):
                await interaction.response.send_message(embed=_system_embed("Not authorized."), ephemeral=True)
                return

            try:
                self.supervisor.kill()
            except NotRunning:
                await interaction.response.send_message(
                    embed=_system_embed("The server isn't running."), ephemeral=True
                )
                return
            except SupervisorError as exc:
                await interaction.response.send_message(embed=_system_embed(str(exc)))
                return

            await interaction.response.send_message(embed=_system_embed("Kill issued."))

        @self.tree.command(name="cmd", description="Run a server console command")
        @app_commands.describe(command="Console command, without a leading slash")
        async def cmd_cmd(interaction: discord.Interaction, command: str):
            if not self._is_allowed(interaction):
                await interaction.response.send_message(embed=_system_embed("Not authorized."), ephemeral=True)
                return

            # The capture window can outlast Discord's 3s response deadline
            await interaction.response.defer()
            try:
                result = await self.supervisor.run_command(
                    command.removeprefix("/"), self.config.capture_window,
                )
            except SupervisorError as exc:
                await interaction.followup.send(embed=_system_embed(str(exc)))
                return

            await interaction.followup.send(self.formatter.format_command_result(result))

        @self.tree.command(name="status", description="Show server status")
        async def cmd_status(interaction: discord.Interaction):
            if not self._is_allowed(interaction):
                await interaction.response.send_message(embed=_system_embed("Not authorized."), ephemeral=True)
                return

            status = self.supervisor.status()
            lines = [f"**State:** {status['state']}"]
            if status["pid"] is not None:
                lines.append(f"**PID:** {status['pid']}")
                lines.append(f"**Uptime:** {status['uptime_seconds']}s")
            await interaction.response.send_message(embed=_system_embed("\n".join(lines)))

    async def on_ready(self) -> None:
        await self.tree.sync()
        log.info("Logged in as %s (ID: %s)", self.user, self.user.id)
        log.info("Synced slash commands")

        channel_id = self.config.relay_channel_id
        if channel_id is not None:
            channel = self.get_channel(channel_id) or await self.fetch_channel(channel_id)
            self._ensure_relay(channel)  # type: ignore[arg-type]
            log.info("Relaying server events to channel %s", channel_id)

    async def on_message(self, message: discord.Message) -> None:
        # Ignore own messages and bots
        if message.author.bot:
            return
        if self.config.relay_channel_id is None or message.channel.id != self.config.relay_channel_id:
            return
        guild_id = message.guild.id if message.guild else None
        if not self.config.is_allowed(guild_id, message.author.id):
            return
        if not self.supervisor.is_running or not message.content.strip():
            return

        try:
            self.supervisor.send_raw(f"say <{message.author.display_name}> {message.content}")
        except SupervisorError as exc:
            log.warning("Could not relay chat to server: %s", exc)

    async def close(self) -> None:
        log.info("Shutting down, stopping server if running")
        await shutdown(self.supervisor, self.config.stop_timeout)
        if self._relay_task is not None:
            self._relay_task.cancel()
        await super().close()
