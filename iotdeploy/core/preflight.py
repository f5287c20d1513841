"""Pre-flight checks run before any state transition."""

import shutil
from typing import Callable, Dict, Iterable, List, Optional

from iotdeploy.constants import REQUIRED_TOOLS
from iotdeploy.exceptions import AwsError, PreconditionError


def missing_tools(
    tools: Iterable[str] = REQUIRED_TOOLS,
    which: Optional[Callable[[str], Optional[str]]] = None,
) -> List[str]:
    which = which or shutil.which
    return [tool for tool in tools if which(tool) is None]


def check_tools(
    tools: Iterable[str] = REQUIRED_TOOLS,
    which: Optional[Callable[[str], Optional[str]]] = None,
) -> None:
    """
    Raises:
        PreconditionError: If any required tool is not on PATH
    """
    missing = missing_tools(tools, which)
    if missing:
        raise PreconditionError(
            f"Required tools not found: {', '.join(missing)}",
            context="Install them and make sure they are on PATH",
        )


def check_credentials(aws) -> Dict[str, str]:
    """
    Confirm the AWS credentials work.

    Returns:
        Caller identity (Account, Arn)

    Raises:
        PreconditionError: If STS rejects the credentials or none are configured
    """
    try:
        return aws.caller_identity()
    except AwsError as e:
        raise PreconditionError(
            "AWS credentials check failed",
            context=e.context or e.message,
        ) from e
