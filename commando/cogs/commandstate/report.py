from typing import Dict, List, Optional

import discord
import yaml

from commando.core.events import OverrideScope
from commando.core.permissions import ALL, EntityReport, PermissionReport, PermissionScope
from commando.core.registry import Command

__all__ = ["build_embed", "to_yaml"]

EMBED_COLOUR = discord.Colour(0x6000FF)
NONE = "None!"


def _state(value: bool) -> str:
    return "enabled" if value else "disabled"


def _truncate(text: str, limit: int = 1024) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 4] + "\n..."


def _channel(guild: Optional[discord.Guild], channel_id: int) -> str:
    channel = guild.get_channel(channel_id) if guild is not None else None
    return channel.mention if channel is not None else f"<#{channel_id}>"


def _role(guild: Optional[discord.Guild], role_id: int) -> str:
    role = guild.get_role(role_id) if guild is not None else None
    return role.mention if role is not None else f"<@&{role_id}>"


def _layer_lines(entries: List[EntityReport], guild, layer: str) -> str:
    lines = []
    for entry in entries:
        if layer == "server":
            if entry.server is not None:
                lines.append(f"• **{entry.name}** -- {_state(entry.server)}")
        elif layer == "channels":
            for channel_id, value in entry.channels.items():
                channel = _channel(guild, channel_id)
                lines.append(f"• **{entry.name}:** {channel} -- {_state(value)}")
        else:
            for role_id, value in entry.roles.items():
                role = _role(guild, role_id)
                lines.append(f"• **{entry.name}:** {role} -- {_state(value)}")
    return _truncate("\n".join(lines)) if lines else NONE


def _whitelist_lines(entries: List[EntityReport]) -> str:
    lines = []
    for entry in entries:
        if entry.whitelist.roles:
            lines.append(f"• **{entry.name} - role:** true")
        if entry.whitelist.channels:
            lines.append(f"• **{entry.name} - channel:** true")
    return _truncate("\n".join(lines)) if lines else "--"


def build_embed(report: PermissionReport, guild: Optional[discord.Guild] = None) -> discord.Embed:
    """Render a permission report."""
    embed = discord.Embed(colour=EMBED_COLOUR)

    if report.target is ALL or isinstance(report.target, PermissionScope):
        if report.target is ALL:
            if guild is not None:
                embed.description = f"Permissions for server **{guild}** ({guild.id})"
            else:
                embed.description = "Global permissions"
        elif report.target.kind is OverrideScope.CHANNEL:
            embed.description = f"Permissions for channel {_channel(guild, report.target.id)}"
        else:
            embed.description = f"Permissions for role {_role(guild, report.target.id)}"
        for title, layer in (("Server", "server"), ("Channel", "channels"), ("Role", "roles")):
            embed.add_field(
                name=f"{title} Commands:", value=_layer_lines(report.commands, guild, layer)
            )
            embed.add_field(
                name=f"{title} Groups:", value=_layer_lines(report.groups, guild, layer)
            )
        if report.target is ALL:
            embed.add_field(name="Whitelisted Commands:", value=_whitelist_lines(report.commands))
            embed.add_field(name="Whitelisted Groups:", value=_whitelist_lines(report.groups))
        return embed

    entry = (report.commands or report.groups)[0]
    kind = "command" if isinstance(entry.entity, Command) else "group"
    embed.description = f"Permissions for {kind} **{entry.name}**"
    server = NONE if entry.server is None else f"• **{entry.name}** -- {_state(entry.server)}"
    embed.add_field(name="Server:", value=server)
    if entry.entity.guarded:
        embed.add_field(name="**Guarded!**", value="Enabled Globally!")
        return embed
    embed.add_field(
        name="Whitelisted:",
        value=f"**Roles:** {entry.whitelist.roles}\n**Channels:** {entry.whitelist.channels}",
    )
    channels = "\n".join(
        f"• **{_channel(guild, channel_id)}** -- {_state(value)}"
        for channel_id, value in entry.channels.items()
    )
    roles = "\n".join(
        f"• {_role(guild, role_id)} -- {_state(value)}" for role_id, value in entry.roles.items()
    )
    embed.add_field(name="Channels:", value=_truncate(channels) or NONE, inline=False)
    embed.add_field(name="Roles:", value=_truncate(roles) or NONE, inline=False)
    if not entry.global_enabled:
        embed.set_footer(text=f"This {kind} is disabled globally.")
    return embed


def _entry_dict(entry: EntityReport) -> Dict[str, object]:
    data: Dict[str, object] = {}
    if entry.server is not None:
        data["server"] = entry.server
    if entry.channels:
        data["channels"] = dict(entry.channels)
    if entry.roles:
        data["roles"] = dict(entry.roles)
    if entry.whitelist.roles or entry.whitelist.channels:
        data["whitelist"] = {
            "roles": entry.whitelist.roles,
            "channels": entry.whitelist.channels,
        }
    if not entry.global_enabled:
        data["global"] = False
    return data


def to_yaml(report: PermissionReport) -> str:
    """Dump a permission report as a YAML document, for download."""
    data = {
        "guild": report.guild_id,
        "commands": {entry.name: _entry_dict(entry) for entry in report.commands},
        "groups": {entry.name: _entry_dict(entry) for entry in report.groups},
    }
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=True)
