"""Options shared by the cluster commands."""

from pathlib import Path
from typing import Optional

import rich_click as click

from iotdeploy.constants import DEFAULT_ENV_FILE
from iotdeploy.core.config_loader import parse_overrides
from iotdeploy.exceptions import ConfigurationError


def resolve_env_file(env_file: Optional[str]) -> Optional[Path]:
    """An explicit --env-file must exist; the default ``.env`` is optional."""
    if env_file:
        return Path(env_file)
    default = Path(DEFAULT_ENV_FILE)
    return default if default.exists() else None


def config_options(func):
    """Add --env-file, --set and --verbose to a command."""
    func = click.option("--verbose", "-v", is_flag=True, help="Show all command output")(func)
    func = click.option(
        "--set",
        "overrides",
        multiple=True,
        metavar="KEY=VALUE",
        help="Override one configuration key (repeatable)",
    )(func)
    func = click.option(
        "--env-file",
        type=click.Path(dir_okay=False),
        default=None,
        help="Dotenv file with the run configuration (default: ./.env)",
    )(func)
    return func


def split_overrides(pairs) -> dict:
    """Parse --set pairs, failing with a usage error on a malformed one."""
    try:
        return parse_overrides(pairs)
    except ConfigurationError as e:
        raise click.BadParameter(e.message, param_hint="--set")
