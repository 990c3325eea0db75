"""Run helper executables without blocking the event loop.

Only the GitHub CLI is run this way. Git goes through GitPython.
"""

import asyncio


async def run_command(*args: str, timeout: float | None = None) -> tuple[str, str, int]:
    """Run ``args`` and collect its output.

    A non-zero exit status is returned, not raised. When ``timeout`` expires
    the process is killed and reaped before ``TimeoutError`` propagates.

    Returns:
        ``(stdout, stderr, returncode)`` with output decoded as UTF-8.

    Raises:
        FileNotFoundError: The executable is not on ``PATH``.
        TimeoutError: ``timeout`` seconds passed first.
    """
    process = await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        out, err = await asyncio.wait_for(process.communicate(), timeout)
    except TimeoutError:
        process.kill()
        await process.wait()
        raise
    return out.decode(errors="replace"), err.decode(errors="replace"), process.returncode
