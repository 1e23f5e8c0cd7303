"""
CLI utilities for command line reconstruction and output formatting.
"""

from pathlib import Path

import click

PROG_NAME = "gen-provenance"


def reconstruct_command_line(click_command: click.Command) -> str:
    """
    Reconstruct command line from current Click context using introspection.

    The result is recorded in provenance commit messages, so it stays
    stable across machines: paths are reduced to their file names.

    Args:
        click_command: Click command object for introspection

    Returns:
        Reconstructed command line string
    """
    # Try to get current Click context for parameter values
    try:
        ctx = click.get_current_context()
        cli_args = ctx.params
    except RuntimeError:
        # No active context, return basic command
        return PROG_NAME

    cmd_parts = [PROG_NAME]
    if click_command.name:
        cmd_parts.append(click_command.name)

    if not cli_args:
        return " ".join(cmd_parts)

    arguments = []  # For positional arguments
    options = []  # For optional arguments

    for param in click_command.params:
        param_name = param.name
        if param_name not in cli_args:
            continue

        value = cli_args[param_name]
        if not value:
            continue

        values = value if isinstance(value, (list, tuple)) else [value]
        formatted_values = [_format_value(v) for v in values]

        if isinstance(param, click.Argument):
            arguments.extend(formatted_values)

        elif isinstance(param, click.Option):
            # Skip if it's the default value
            if value == param.default:
                continue

            flag = param.opts[0] if param.opts else f"--{param_name}"
            if param.is_flag:
                options.append(flag)
            else:
                for formatted_value in formatted_values:
                    options.extend([flag, formatted_value])

    cmd_parts.extend(arguments)
    cmd_parts.extend(options)

    return " ".join(cmd_parts)


def _format_value(value) -> str:
    # Convert file paths to just file names for cleaner display
    if isinstance(value, (str, Path)):
        path_obj = Path(str(value))
        return path_obj.name if path_obj.exists() else str(value)
    return str(value)


def status_color(status: str) -> str | None:
    """Terminal color used for a file status."""
    return {
        "created": "green",
        "fast-forward": None,
        "clean": "cyan",
        "conflict": "red",
        "kept-ours": "yellow",
        "overwritten": "yellow",
        "removed": "magenta",
        "orphaned": "yellow",
    }.get(status)
