import asyncio
from typing import Dict, Optional

from issuebot.github.client import GitHubClientError
from issuebot.logger import get_logger


logger = get_logger("issuebot.github.shell")

COMMAND_TIMEOUT_SECONDS = 120.0


async def run_command(
    *args: str,
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: float = COMMAND_TIMEOUT_SECONDS,
) -> str:
    """
    Run a command without a shell and return its stdout.

    Raises GitHubClientError on a missing binary, timeout or non-zero exit.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise GitHubClientError(f"Failed to start {args[0]}: {exc}") from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        proc.kill()
        await proc.wait()
        raise GitHubClientError(f"{args[0]} timed out after {timeout}s") from exc

    if proc.returncode != 0:
        stderr_msg = stderr.decode(errors="replace").strip() or "(no stderr)"
        logger.warning("Command failed (%s): %s", proc.returncode, " ".join(args[:3]))
        raise GitHubClientError(f"{args[0]} exited with {proc.returncode}: {stderr_msg}")

    return stdout.decode(errors="replace")
