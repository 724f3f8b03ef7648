"""Minimal service: one HTTP route, one model, one plugin that greets on ready."""

from __future__ import annotations

import asyncio
import signal
from contextlib import suppress

from fastapi import FastAPI
from sqlalchemy import Column, String

from corekit import Core, CorePlugin


class Greeting:
    @classmethod
    async def start(cls) -> None:
        if await cls.find_one(text="hello") is None:
            await cls.bulk_create([{"text": "hello"}])


class HelloPlugin(CorePlugin):
    def get_config_setup(self) -> dict:
        return {"defaults": {"greeting_suffix": "!"}}

    def handle_server(self, app: FastAPI) -> None:
        @app.get("/")
        async def index() -> dict[str, str]:
            model = self.core.database.models["Greeting"]
            greeting = await model.find_one(text="hello")
            return {"message": f"{greeting.text}{self.core.config['greeting_suffix']}"}

    def collect_models(self) -> dict:
        return {"Greeting": {"default": Greeting, "schema": {"text": Column(String, nullable=False)}}}

    async def ready(self) -> None:
        self.log("Serving on port %s", self.core.config["insecure_port"])


async def main() -> None:
    core = Core(name="hello-service", version="0.1.0", insecure_port=8080, database=True, sqlite=True)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(signum, stop.set)

    async with core:
        await core.init({"hello": HelloPlugin})
        await stop.wait()


if __name__ == "__main__":
    asyncio.run(main())
