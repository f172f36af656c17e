import pytest

from agent_loop.exceptions import ToolBlockedError
from agent_loop.tools.safety import (
    BLOCKED_SENTINEL,
    DANGEROUS_PATTERNS,
    ensure_allowed,
    is_blocked,
    matched_pattern,
)


@pytest.mark.parametrize(
    "command",
    [
        "rm -rf /",
        "sudo ls",
        "shutdown now",
        "reboot",
        "echo foo > /dev/sda",
        "echo ok && sudo rm file",
        "ls; rm -rf /tmp/x",
    ],
)
def test_blocked_commands(command):
    assert is_blocked(command) is True


@pytest.mark.parametrize(
    "command",
    [
        "echo safe",
        "ls -la",
        "SUDO ls",
        "rm -rf ./build",
        "echo foo >/dev/null",
    ],
)
def test_allowed_commands(command):
    assert is_blocked(command) is False


def test_matching_is_plain_substring():
    # No tokenization: the word appears inside another token.
    assert matched_pattern("man visudo") == "sudo"
    assert matched_pattern("echo hello") is None


def test_custom_patterns():
    assert is_blocked("mkfs /dev/sda1", ["mkfs"]) is True
    assert is_blocked("sudo ls", []) is False


def test_ensure_allowed_raises_with_pattern():
    with pytest.raises(ToolBlockedError, match="Command matches blocked pattern: sudo"):
        ensure_allowed("sudo ls")
    ensure_allowed("echo ok")


def test_sentinel_and_default_patterns():
    assert BLOCKED_SENTINEL == "Error: Dangerous command blocked"
    assert DANGEROUS_PATTERNS == ("rm -rf /", "sudo", "shutdown", "reboot", "> /dev/")
