"""
Network latency probe.

Runs the platform ping tool and turns its text output into round-trip
statistics: min, max, average, jitter and packet loss.
"""

import asyncio
import logging
import platform
import re
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from ..core.errors import ProbeCancelledError, ProbeError, ProbeTimeoutError
from ..core.models import PingResult


logger = logging.getLogger(__name__)

MIN_COUNT = 1
MAX_COUNT = 20

# "time=23.4 ms" (Linux/macOS), "time=12ms" and "time<1ms" (Windows)
_SAMPLE_RE = re.compile(r"time[=<]\s*([0-9]+(?:\.[0-9]+)?)\s*ms", re.IGNORECASE)
# "0% packet loss", "0.0% packet loss" (macOS), "(0% loss)" (Windows)
_LOSS_RE = re.compile(r"([0-9]+(?:\.[0-9]+)?)%\s*(?:packet\s+loss|loss)", re.IGNORECASE)


def clamp_count(count: int) -> int:
    return max(MIN_COUNT, min(MAX_COUNT, int(count)))


def parse_samples(output: str) -> List[float]:
    """All round-trip times in milliseconds, in the order they were printed."""
    samples = []
    for match in _SAMPLE_RE.finditer(output):
        try:
            samples.append(float(match.group(1)))
        except ValueError:
            continue
    return samples


def parse_packet_loss(output: str) -> Optional[float]:
    """Packet loss percentage, or None when the output does not report one."""
    match = _LOSS_RE.search(output)
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


def jitter(samples: Sequence[float]) -> Optional[float]:
    """Mean absolute difference between consecutive samples."""
    if len(samples) < 2:
        return None
    diffs = [abs(b - a) for a, b in zip(samples, samples[1:])]
    return sum(diffs) / len(diffs)


def summarize(target: str, samples: Sequence[float], loss_pct: Optional[float]) -> PingResult:
    """Build a PingResult. Statistics stay None rather than 0 when there are no samples."""
    if not samples:
        return PingResult(target=target, loss_pct=loss_pct, samples=())

    return PingResult(
        target=target,
        min_ms=min(samples),
        max_ms=max(samples),
        avg_ms=sum(samples) / len(samples),
        jitter_ms=jitter(samples),
        loss_pct=loss_pct,
        samples=tuple(samples),
    )


def parse_ping_output(target: str, output: str) -> PingResult:
    return summarize(target, parse_samples(output), parse_packet_loss(output))


class PingRunner(ABC):
    """Runs the ping tool and returns its raw text output."""

    @abstractmethod
    async def run(self, count: int, target: str, cancel: Optional[asyncio.Event] = None) -> str:
        """Ping ``target`` ``count`` times; return combined stdout and stderr."""


class SubprocessPingRunner(PingRunner):
    """
    Spawns the platform ping command.

    The process is killed when the timeout expires, when ``cancel`` is set,
    or when the awaiting task is cancelled.
    """

    def __init__(self, timeout: float = 30.0, command: str = "ping"):
        self.timeout = timeout
        self.command = command
        self._is_windows = platform.system() == "Windows"

    def build_command(self, count: int, target: str) -> List[str]:
        if self._is_windows:
            return [self.command, "-n", str(count), target]
        # macOS/Linux
        return [self.command, "-c", str(count), target]

    async def run(self, count: int, target: str, cancel: Optional[asyncio.Event] = None) -> str:
        cmd = self.build_command(count, target)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise ProbeError(f"failed to run {cmd[0]}: {e}") from e

        communicate = asyncio.ensure_future(proc.communicate())
        waiters = {communicate}
        cancel_wait = None
        if cancel is not None:
            cancel_wait = asyncio.ensure_future(cancel.wait())
            waiters.add(cancel_wait)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=self.timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            await self._kill(proc, communicate)
            raise
        finally:
            if cancel_wait is not None:
                cancel_wait.cancel()

        if communicate not in done:
            await self._kill(proc, communicate)
            if cancel_wait is not None and cancel_wait in done:
                raise ProbeCancelledError(f"ping to {target} cancelled")
            raise ProbeTimeoutError(f"ping to {target} timed out after {self.timeout}s")

        stdout, _ = communicate.result()
        output = stdout.decode("utf-8", errors="ignore") if stdout else ""
        if proc.returncode != 0 and not output.strip():
            raise ProbeError(f"{cmd[0]} exited with status {proc.returncode} and no output")
        return output

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process, communicate: asyncio.Future):
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        # Drain pipes so the transport closes; output is discarded
        done, _ = await asyncio.wait({communicate}, timeout=2.0)
        if not done:
            communicate.cancel()
        elif not communicate.cancelled() and communicate.exception() is not None:
            logger.debug(f"Ping output drain failed: {communicate.exception()}")


class NetworkProbe:
    """
    On-demand latency diagnostics.

    Probes share no state, so any number may run concurrently.
    """

    def __init__(self, runner: Optional[PingRunner] = None):
        self.runner = runner or SubprocessPingRunner()

    async def measure(
        self,
        target: str,
        count: int = 4,
        cancel: Optional[asyncio.Event] = None,
    ) -> PingResult:
        """
        Ping a target and summarize the round-trip times.

        Args:
            target: Hostname or IP address
            count: Number of echo requests, clamped to 1..20
            cancel: Optional event that aborts the probe when set

        Returns:
            PingResult; a host that answers nothing yields empty statistics,
            not an error
        """
        target = (target or "").strip()
        if not target or target.startswith("-"):
            raise ProbeError(f"invalid ping target {target!r}")

        count = clamp_count(count)
        logger.debug(f"Pinging {target} ({count} requests)")
        output = await self.runner.run(count, target, cancel)
        result = parse_ping_output(target, output)
        logger.info(
            f"Ping {target}: {len(result.samples)} replies, "
            f"avg={result.avg_ms} ms, loss={result.loss_pct}%"
        )
        return result
