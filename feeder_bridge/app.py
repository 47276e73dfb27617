import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from feeder_bridge.lib.bridge import FeederBridge
from feeder_bridge.lib.errors import DeliveryFailed, InvalidCommand
from feeder_bridge.lib.settings import BridgeSettings

LOG = logging.getLogger("feeder_bridge.app")

# Config file to load (overridable via BRIDGE_CONFIG env var)
CONFIG_FILE = Path(os.getenv("BRIDGE_CONFIG", Path(__file__).resolve().parent / "config.ini"))


def create_app(bridge: FeederBridge) -> FastAPI:
    app = FastAPI(title="Pet feeder bridge")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=bridge.settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.bridge = bridge

    @app.on_event("startup")
    async def startup_event():
        bridge.start(asyncio.get_running_loop())

    @app.on_event("shutdown")
    async def shutdown_event():
        bridge.stop()

    @app.get("/api/state")
    async def get_state() -> Dict[str, Any]:
        return bridge.queries.get_state().to_json()

    @app.get("/api/confirmations")
    async def get_confirmations() -> List[Dict[str, Any]]:
        return [c.to_json() for c in bridge.queries.get_confirmations()]

    @app.get("/api/health")
    async def health() -> Dict[str, Any]:
        return bridge.queries.get_health()

    # Plain def: FastAPI runs it in the thread pool while publish blocks on the PUBACK
    @app.post("/api/command")
    def post_command(payload: Any = Body(default=None)):
        try:
            if not isinstance(payload, dict):
                raise InvalidCommand("Request body must be a JSON object")
            name = payload.get("commandName", payload.get("command", payload.get("comando")))
            command = bridge.dispatcher.submit(name)
        except InvalidCommand as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        except DeliveryFailed:
            return JSONResponse(status_code=500, content={"error": "Error sending command"})
        return {"success": True, "message": f'Command "{command.name}" sent'}

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket):
        await ws.accept()
        if not await bridge.notifier.subscribe(ws, bridge.queries.get_state()):
            return
        try:
            while True:
                await ws.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            bridge.notifier.unsubscribe(ws)

    return app


def load_settings(config_file: Optional[Path] = None) -> BridgeSettings:
    settings = BridgeSettings(str(config_file or CONFIG_FILE))
    settings.read_config()
    return settings


def main() -> None:
    import uvicorn

    settings = load_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(message)s")
    app = create_app(FeederBridge(settings))
    LOG.info("API server listening on port %d", settings.http_port)
    uvicorn.run(app, host=settings.http_host, port=settings.http_port)


if __name__ == "__main__":
    main()
