"""
Dev-server process management for workshop apps.

Apps whose package.json has a ``dev`` script get their own server process,
bound to the deterministic port assigned by the catalog. This module starts
and stops those processes, checks ports and health, and forwards messages
to a running server.
"""

import asyncio
import os
import socket
import time
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

import httpx

from .models import ScriptDev
from .shared.logger import get_logger

logger = get_logger(__name__)

MESSAGE_PATH = "__kcdshop_message__"


class ProcessManager(Protocol):
    """What the catalog and the playground sync need from a process manager."""

    async def start(self, app) -> "StartResult":
        ...

    async def stop(self, app_name: str) -> None:
        ...

    def is_running(self, app) -> bool:
        ...

    def is_port_free(self, port: int) -> bool:
        ...

    async def send_message(self, app, message: str) -> None:
        ...

    async def wait_until_healthy(self, app) -> bool:
        ...

    async def stop_all(self) -> None:
        ...


@dataclass
class StartResult:
    running: bool
    status: str
    port_number: Optional[int] = None


@dataclass
class DevProcess:
    app_name: str
    port_number: int
    process: asyncio.subprocess.Process
    reader: Optional[asyncio.Task] = None


class DevServerManager:
    """Runs ``npm run dev`` for script-type apps."""

    def __init__(self, command: tuple = ("npm", "run", "dev", "--silent"), health_timeout: float = 15.0):
        self._command = command
        self._health_timeout = health_timeout
        self._processes: Dict[str, DevProcess] = {}

    def is_port_free(self, port: int) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind(("127.0.0.1", port))
            except OSError:
                return False
        return True

    def is_running(self, app) -> bool:
        dev_process = self._processes.get(app.name)
        return dev_process is not None and dev_process.process.returncode is None

    async def start(self, app) -> StartResult:
        if not isinstance(app.dev, ScriptDev):
            return StartResult(running=False, status="no-dev-script")

        port = app.dev.port_number
        if self.is_running(app):
            return StartResult(running=True, status="already-running", port_number=port)
        if not self.is_port_free(port):
            return StartResult(running=False, status="port-unavailable", port_number=port)

        env = {
            **os.environ,
            "PORT": str(port),
            "APP_SERVER_PORT": str(port),
            "KCDSHOP_APP_NAME": app.name,
        }
        logger.info("Starting dev server for %s on port %d", app.name, port)
        process = await asyncio.create_subprocess_exec(
            *self._command,
            cwd=app.full_path,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        dev_process = DevProcess(app_name=app.name, port_number=port, process=process)
        dev_process.reader = asyncio.ensure_future(self._collect_output(dev_process))
        self._processes[app.name] = dev_process
        return StartResult(running=True, status="started", port_number=port)

    async def _collect_output(self, dev_process: DevProcess) -> None:
        stream = dev_process.process.stdout
        while stream is not None:
            line = await stream.readline()
            if not line:
                break
            logger.debug("[%s] %s", dev_process.app_name, line.decode("utf-8", errors="replace").rstrip())

    async def stop(self, app_name: str) -> None:
        dev_process = self._processes.pop(app_name, None)
        if dev_process is None:
            return
        process = dev_process.process
        if process.returncode is None:
            logger.info("Stopping dev server for %s", app_name)
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=5)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
        if dev_process.reader is not None:
            dev_process.reader.cancel()

    async def stop_all(self) -> None:
        for app_name in list(self._processes):
            await self.stop(app_name)

    async def send_message(self, app, message: str) -> None:
        if not isinstance(app.dev, ScriptDev):
            return
        url = f"{app.dev.base_url}{MESSAGE_PATH}"
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.post(url, json={"message": message})
        except httpx.HTTPError as e:
            logger.warning("Could not send %r to the dev server of %s: %s", message, app.name, e)
            return
        if response.status_code != 200:
            logger.warning("Dev server of %s rejected message %r: %s", app.name, message, response.status_code)

    async def wait_until_healthy(self, app) -> bool:
        """Poll the app's base URL until it answers or the timeout elapses."""
        if not isinstance(app.dev, ScriptDev):
            return True
        deadline = time.monotonic() + self._health_timeout
        async with httpx.AsyncClient(timeout=2.0) as client:
            while time.monotonic() < deadline:
                if not self.is_running(app):
                    return False
                try:
                    response = await client.get(app.dev.base_url)
                    if response.status_code < 500:
                        return True
                except (httpx.TimeoutException, httpx.ConnectError):
                    pass
                await asyncio.sleep(0.2)
        logger.warning("Dev server of %s did not become healthy within %.0fs", app.name, self._health_timeout)
        return False
