# naming.py
# Reversible encoding between a tool's composite key and its global name.
#
#   full_name = provider_id + SEPARATOR + local_name
#
# Provider ids are checked for the separator when a provider is registered,
# so decoding can always split on the first occurrence.

from typing import NamedTuple

from mcp_conductor.errors import ConfigurationError, ToolNotFound

SEPARATOR = "_"


class ToolKey(NamedTuple):
    """Explicit (provider, tool) pair behind every full tool name."""

    provider_id: str
    local_name: str

    @property
    def full_name(self) -> str:
        return encode_tool_name(self.provider_id, self.local_name)


def validate_provider_id(provider_id: str) -> str:
    """Reject ids that would make full-name decoding ambiguous."""
    if not provider_id or not provider_id.strip():
        raise ConfigurationError("provider id", "must be a non-empty string")
    if SEPARATOR in provider_id:
        raise ConfigurationError(
            "provider id",
            f"{provider_id!r} contains the tool-name separator {SEPARATOR!r}",
        )
    return provider_id


def encode_tool_name(provider_id: str, local_name: str) -> str:
    return f"{provider_id}{SEPARATOR}{local_name}"


def decode_tool_name(full_name: str) -> ToolKey:
    """
    Split a full tool name back into its ToolKey.

    Raises ToolNotFound when the name has no separator or either half is empty.
    """
    provider_id, sep, local_name = full_name.partition(SEPARATOR)
    if not sep or not provider_id or not local_name:
        raise ToolNotFound(
            full_name,
            f"Invalid tool name {full_name!r}. Expected '<provider>{SEPARATOR}<tool>'.",
        )
    return ToolKey(provider_id, local_name)
