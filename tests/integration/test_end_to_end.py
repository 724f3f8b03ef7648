from __future__ import annotations

import socket
from datetime import date, datetime
from pathlib import Path
from typing import Any

import httpx
import pytest
import websockets
from fastapi import FastAPI, WebSocket
from fastapi.responses import PlainTextResponse
from sqlalchemy import Column, DateTime, String

from corekit import Core, CorePlugin


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        probe.bind(("127.0.0.1", 0))
        return probe.getsockname()[1]


@pytest.mark.asyncio
async def test_full_lifecycle_with_server_database_and_client(tmp_path: Path) -> None:
    port = _free_port()
    state: dict[str, Any] = {"plugin_called": False, "model_started": False, "received_key": None}

    class CatModel:
        @classmethod
        def start(cls) -> None:
            state["model_started"] = True

    cat_definition = {
        "default": CatModel,
        "schema": {
            "color": String,
            "name": Column(String, nullable=False),
            "birth_day": Column(DateTime, nullable=False),
        },
    }

    class RemoveMe:
        async def pre_init(self) -> bool:
            return False

    class Main:
        async def init(self) -> None:
            state["plugin_called"] = True

        def collect_models(self) -> dict:
            return {"Cat": cat_definition}

    class SocketServer(CorePlugin):
        def handle_server(self, app: FastAPI) -> None:
            @app.websocket("/socket")
            async def socket_endpoint(websocket: WebSocket) -> None:
                await websocket.accept()
                state["received_key"] = websocket.query_params.get("key")
                self.log("Client has connected!")
                await websocket.send_text("welcome")
                await websocket.close()

    core = Core(
        name="corekit-test",
        version="1.0.0",
        app_folder=tmp_path,
        log_to_console=False,
        insecure_port=port,
        database=True,
        sqlite=True,
        use_http_client=True,
        server_log_level="info",
        database_log_level="debug",
        http_client_log_level="info",
    )
    try:
        await core.init({"main": Main, "remove_me": RemoveMe, "socket_server": SocketServer})

        assert core.app is not None
        requests: list[str] = []

        async def index() -> PlainTextResponse:
            requests.append("index")
            return PlainTextResponse("hi")

        core.app.add_api_route("/", index, methods=["GET"])

        assert isinstance(core.http_client, httpx.AsyncClient)
        assert len(core.plugins) == 2
        assert state["plugin_called"] is True
        assert state["model_started"] is True

        response = await core.http_client.get(f"http://127.0.0.1:{port}/")
        assert requests == ["index"]
        assert response.status_code == 200
        assert response.reason_phrase == "OK"
        assert response.headers["x-response-time"]
        assert response.text == "hi"
        assert response.request.headers["user-agent"] == "corekit-test/1.0.0"

        assert core.database is not None
        cat = core.database.models["Cat"]
        await cat.bulk_create(
            [
                {"name": "Mia", "color": "grey", "birth_day": datetime(2013, 3, 16, 14)},
                {"name": "Aki", "color": "grey", "birth_day": datetime(2011, 9, 23, 9)},
            ]
        )
        aki = await cat.find_one(name="Aki")
        assert aki is not None and aki.color == "grey"
        assert len(await cat.find_all(color="grey")) == 2

        async with websockets.connect(f"ws://127.0.0.1:{port}/socket?key=mykey") as client:
            assert await client.recv() == "welcome"
        assert state["received_key"] == "mykey"
    finally:
        await core.close()

    log_file = tmp_path / "log" / "debug" / f"{date.today().isoformat()}.txt"
    content = log_file.read_text(encoding="utf-8")
    assert "3 plugins: main (self-managed), remove_me (self-managed), socket_server (auto-managed)" in content
    assert "Removed 1 plugin after pre_init: remove_me" in content
    assert "GET / -> 200" in content


@pytest.mark.asyncio
async def test_schema_policies_on_sqlite(tmp_path: Path) -> None:
    schema: dict[str, Any] = {"name": String}

    class Models:
        def collect_models(self) -> dict:
            return {"Note": {"schema": dict(schema)}}

    def build(policy: str) -> Core:
        return Core(
            name="schema-test",
            app_folder=tmp_path,
            log_to_console=False,
            database=True,
            sqlite=True,
            config_setup={"defaults": {"database_schema_sync": policy}},
        )

    first = build("sync")
    try:
        await first.init({"models": Models})
        note = first.database.models["Note"]
        await note.bulk_create([{"name": "kept"}])
    finally:
        await first.close()

    (tmp_path / "config.json").unlink()
    schema["body"] = String
    second = build("alter")
    try:
        await second.init({"models": Models})
        note = second.database.models["Note"]
        await note.bulk_create([{"name": "new", "body": "text"}])
        assert {row.name for row in await note.find_all()} == {"kept", "new"}
    finally:
        await second.close()

    (tmp_path / "config.json").unlink()
    third = build("force")
    try:
        await third.init({"models": Models})
        assert await third.database.models["Note"].find_all() == []
    finally:
        await third.close()
