"""Help text for every command type.

Only used for user-facing descriptions (``hass-satellite types``); it plays
no part in reconciliation or publishing.
"""

from __future__ import annotations

from .models import CommandType

UNKNOWN_COMMAND_INFO = (
    "Unknown command, make sure the satellite has finished booting up."
)

_COMMAND_INFO: dict[CommandType, str] = {
    CommandType.SHUTDOWN: (
        "Shuts down the machine after one minute.\n\n"
        "Tip: accidentally triggered? Run 'shutdown -c' to abort."
    ),
    CommandType.RESTART: (
        "Restarts the machine after one minute.\n\n"
        "Tip: accidentally triggered? Run 'shutdown -c' to abort."
    ),
    CommandType.HIBERNATE: "Sets the machine in hibernation.",
    CommandType.SLEEP: (
        "Puts the machine to sleep.\n\n"
        "Note: this uses 'systemctl suspend', hybrid sleep settings of the "
        "host still apply."
    ),
    CommandType.LOG_OFF: "Logs off the current session.",
    CommandType.LOCK: "Locks the current session.",
    CommandType.CUSTOM: (
        "Execute a custom command.\n\n"
        "These commands run without special elevation, as the user running "
        "the satellite. Use sudo rules or a systemd unit if elevation is needed."
    ),
    CommandType.SHELL_SCRIPT: (
        "Execute a shell command or script.\n\n"
        "You can either provide the location of a script (*.sh), or a "
        "single-line command.\n\nThis will run without special elevation."
    ),
    CommandType.MEDIA_PLAY_PAUSE: "Simulates 'media playpause' key.",
    CommandType.MEDIA_NEXT: "Simulates 'media next' key.",
    CommandType.MEDIA_PREVIOUS: "Simulates 'media previous' key.",
    CommandType.MEDIA_VOLUME_UP: "Simulates 'volume up' key.",
    CommandType.MEDIA_VOLUME_DOWN: "Simulates 'volume down' key.",
    CommandType.MEDIA_MUTE: "Simulates 'mute' key.",
    CommandType.KEY: (
        "Simulates a single keypress.\n\n"
        "Any xdotool key name can be used (e.g. 'ctrl+alt+t', 'F5').\n\n"
        "Another option is binding a script to a custom command."
    ),
    CommandType.PUBLISH_ALL_SENSORS: (
        "Resets all state checks, forcing every command to send its state "
        "on the next cycle.\n\n"
        "Useful for example after a Home Assistant reboot."
    ),
    CommandType.LAUNCH_URL: (
        "Launches the provided URL, by default in your default browser.\n\n"
        "To use a specific browser, set 'external_tools.browser' in the "
        "configuration."
    ),
    CommandType.CUSTOM_EXECUTOR: (
        "Executes the command through the configured custom executor "
        "('external_tools.custom_executor').\n\n"
        "Your command is provided as an argument 'as is', so you have to "
        "supply your own quotes etc. if necessary."
    ),
}


def load_command_info() -> dict[CommandType, str]:
    """Return a fresh copy of the command type help table."""
    return dict(_COMMAND_INFO)


__all__ = ["UNKNOWN_COMMAND_INFO", "load_command_info"]
