from __future__ import annotations

import asyncio
import json

from kubeward.core.exceptions import ProvisionerError


class CommandError(ProvisionerError):
    """A minikube command exited non-zero or ran past its deadline."""

    def __init__(self, cmd: str, returncode: int | None, stderr: str, stdout: str = "") -> None:
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        status = "timed out" if returncode is None else f"exit {returncode}"
        super().__init__(f"{cmd} failed ({status}): {stderr}")


async def run(binary: str, *args: str, timeout: float | None = None) -> str:
    cmd = f"{binary} {' '.join(args)}"
    try:
        proc = await asyncio.create_subprocess_exec(
            binary, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise CommandError(cmd, None, str(e)) from e

    try:
        async with asyncio.timeout(timeout):
            stdout, stderr = await proc.communicate()
    except TimeoutError:
        proc.kill()
        await proc.wait()
        raise CommandError(cmd, None, f"no result after {timeout}s") from None

    out = stdout.decode().strip()
    if proc.returncode != 0:
        raise CommandError(cmd, proc.returncode, stderr.decode().strip(), out)
    return out


async def run_json(binary: str, *args: str, timeout: float | None = None) -> dict | list:
    out = await run(binary, *args, timeout=timeout)
    return json.loads(out)
