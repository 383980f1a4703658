import pytest

from mcp_conductor.errors import ConfigurationError, ToolNotFound
from mcp_conductor.naming import (
    SEPARATOR,
    ToolKey,
    decode_tool_name,
    encode_tool_name,
    validate_provider_id,
)


def test_encode_joins_with_separator():
    assert encode_tool_name("filesystem", "read_file") == f"filesystem{SEPARATOR}read_file"


def test_decode_splits_at_first_separator():
    key = decode_tool_name("filesystem_read_file")
    assert key == ToolKey("filesystem", "read_file")
    assert key.full_name == "filesystem_read_file"


def test_decode_keeps_dashes_in_provider_id():
    key = decode_tool_name("duckduckgo-search_web-search")
    assert key.provider_id == "duckduckgo-search"
    assert key.local_name == "web-search"


@pytest.mark.parametrize("name", ["nounderscore", "_tool", "provider_", ""])
def test_decode_rejects_malformed_names(name):
    with pytest.raises(ToolNotFound):
        decode_tool_name(name)


@pytest.mark.parametrize("provider_id", ["my_provider", "", "   "])
def test_validate_provider_id_rejects_ambiguous_ids(provider_id):
    with pytest.raises(ConfigurationError):
        validate_provider_id(provider_id)


def test_validate_provider_id_passes_valid_id_through():
    assert validate_provider_id("sequential-thinking") == "sequential-thinking"
