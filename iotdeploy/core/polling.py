"""
Bounded status polling.

Every wait in the lifecycle goes through ``wait_for``: a fixed interval, a
fixed number of attempts and a named policy saying whether running out of
attempts stops the run or only produces a warning.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from iotdeploy.exceptions import PollingTimeoutError, TerminalStatusError
from iotdeploy.models.status import ProbeResult, Readiness


class PollDecision(Enum):
    """What the wait loop does after one status read."""

    CONTINUE = "continue"
    SUCCEED = "succeed"
    FAIL = "fail"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class PollPolicy:
    """Interval, attempt budget and criticality of one named wait."""

    name: str
    interval: float
    max_attempts: int
    critical: bool

    @property
    def budget_seconds(self) -> float:
        return self.interval * (self.max_attempts - 1)


POLL_POLICIES = {
    "identity-provider": PollPolicy("identity-provider", 5, 24, critical=True),
    "storage-addon": PollPolicy("storage-addon", 10, 30, critical=False),
    "nodes": PollPolicy("nodes", 15, 40, critical=True),
    "secrets-operator": PollPolicy("secrets-operator", 10, 30, critical=True),
    "secrets-sync": PollPolicy("secrets-sync", 10, 30, critical=True),
    "applications": PollPolicy("applications", 15, 40, critical=False),
    "nat-gateway-release": PollPolicy("nat-gateway-release", 10, 12, critical=False),
    "addon-deletion": PollPolicy("addon-deletion", 5, 12, critical=False),
}


def decide(
    attempt: int,
    max_attempts: int,
    readiness: Readiness,
    elapsed: float = 0.0,
    deadline: Optional[float] = None,
) -> PollDecision:
    """
    Decide the next move from the attempt number (1-based), the time spent
    so far and the status just read. Pure: no I/O, no clock.
    """
    if readiness == Readiness.READY:
        return PollDecision.SUCCEED
    if readiness == Readiness.FAILED:
        return PollDecision.FAIL
    if attempt >= max_attempts:
        return PollDecision.EXHAUSTED
    if deadline is not None and elapsed >= deadline:
        return PollDecision.EXHAUSTED
    return PollDecision.CONTINUE


@dataclass
class WaitResult:
    """Final state of a wait."""

    ready: bool
    attempts: int
    last: ProbeResult


def wait_for(
    probe: Callable[[], ProbeResult],
    policy: PollPolicy,
    logger=None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    label: Optional[str] = None,
) -> WaitResult:
    """
    Poll ``probe`` until it is ready, fails terminally or the policy runs out.

    Raises:
        TerminalStatusError: As soon as the probe reports FAILED
        PollingTimeoutError: When a critical policy is exhausted
    """
    label = label or policy.name
    started = clock()
    attempt = 0

    while True:
        attempt += 1
        result = probe()

        if logger:
            logger.log(
                f"{label}: {result.readiness.value}"
                f"{' (' + result.detail + ')' if result.detail else ''}"
                f" [attempt {attempt}/{policy.max_attempts}]"
            )

        decision = decide(attempt, policy.max_attempts, result.readiness, clock() - started)

        if decision == PollDecision.SUCCEED:
            return WaitResult(ready=True, attempts=attempt, last=result)

        if decision == PollDecision.FAIL:
            raise TerminalStatusError(
                label, result.detail or result.readiness.value, result.payload
            )

        if decision == PollDecision.EXHAUSTED:
            if policy.critical:
                raise PollingTimeoutError(label, attempt, result.detail)
            if logger:
                logger.warning(
                    f"{label} not ready after {attempt} attempts"
                    f"{': ' + result.detail if result.detail else ''}, continuing"
                )
            return WaitResult(ready=False, attempts=attempt, last=result)

        sleep(policy.interval)
