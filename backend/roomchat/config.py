from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    history_capacity: int = 100
    default_room: str | None = "LOBBY"
    default_room_name: str = "Lobby"
    # "room" relays to the sender's room, "global" to every connection
    message_scope: Literal["room", "global"] = "room"
    # "room" relays to the sender's room peers, "broadcast" to everyone but the sender
    call_signal_scope: Literal["room", "broadcast"] = "room"
    expiring_message_delay: float = 10.0
    max_body_length: int = 4000
    announce_departures: bool = True
    jwt_secret_key: str | None = None
    jwt_algorithm: str = "HS256"
    require_identity_token: bool = False
    stun_servers: str = "stun:stun.l.google.com:19302"
    turn_uri: str | None = None
    turn_username: str | None = None
    turn_password: str | None = None
    cors_origins: str = "http://localhost:5173"
    log_level: str = "info"
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(env_prefix="ROOMCHAT_", env_file=".env", case_sensitive=False)

settings = Settings()
