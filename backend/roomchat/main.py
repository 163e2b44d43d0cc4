import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from .config import Settings, settings as default_settings
from .dispatcher import RelayDispatcher
from .schemas import Message, Profile, Room

logger = logging.getLogger(__name__)


def get_dispatcher(request: Request) -> RelayDispatcher:
    return request.app.state.dispatcher


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Relay ready (history_capacity=%d, message_scope=%s, call_signal_scope=%s)",
            settings.history_capacity, settings.message_scope, settings.call_signal_scope,
        )
        yield
        await app.state.dispatcher.close()

    app = FastAPI(title="Room Chat Relay", lifespan=lifespan)
    app.state.settings = settings
    app.state.dispatcher = RelayDispatcher(settings)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origins.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # ---------------------- ROOMS ----------------------
    @app.get("/rooms", response_model=list[Room])
    async def list_rooms(dispatcher: RelayDispatcher = Depends(get_dispatcher)):
        return dispatcher.directory.list()

    @app.get("/rooms/{room_id}/history", response_model=list[Message])
    async def room_history(room_id: str, dispatcher: RelayDispatcher = Depends(get_dispatcher)):
        if room_id not in dispatcher.directory:
            raise HTTPException(status_code=404, detail="Room not found")
        return dispatcher.history.snapshot(room_id)

    # Bodies may be client-encrypted, in which case nothing ever matches.
    @app.get("/rooms/{room_id}/search", response_model=list[Message])
    async def search_room(room_id: str, q: str = Query(..., min_length=1), dispatcher: RelayDispatcher = Depends(get_dispatcher)):
        if room_id not in dispatcher.directory:
            raise HTTPException(status_code=404, detail="Room not found")
        return dispatcher.history.search(room_id, q)

    @app.get("/presence", response_model=list[Profile])
    async def presence(dispatcher: RelayDispatcher = Depends(get_dispatcher)):
        return dispatcher.registry.list_all()

    @app.get("/rtc/config")
    async def rtc_config():
        ice_servers = []
        if settings.stun_servers:
            for stun in settings.stun_servers.split(","):
                ice_servers.append({"urls": stun.strip()})
        if settings.turn_uri and settings.turn_username and settings.turn_password:
            ice_servers.append({
                "urls": settings.turn_uri,
                "username": settings.turn_username,
                "credential": settings.turn_password,
            })
        return {"iceServers": ice_servers}

    # ---------------------- WEBSOCKET ----------------------
    # One receive loop per socket: a connection's events are applied in arrival order.
    @app.websocket("/ws")
    async def ws_relay(ws: WebSocket):
        dispatcher: RelayDispatcher = ws.app.state.dispatcher
        await ws.accept()
        connection_id = await dispatcher.connect(ws)
        try:
            while connection_id in dispatcher.sockets:
                frame = await ws.receive()
                if frame["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(frame.get("code", 1000))
                raw = frame.get("text")
                if raw is None:
                    logger.warning("Dropped non-text frame from %s", connection_id)
                    continue
                await dispatcher.handle_text(connection_id, raw)
        except WebSocketDisconnect:
            pass
        finally:
            await dispatcher.disconnect(connection_id)

    return app


app = create_app()
