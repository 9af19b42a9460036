from dataclasses import dataclass

from flask import Flask
from flask_cors import CORS

from .accounts import AccountDirectory
from .audit import AuditLog
from .broadcast import BroadcastDispatcher
from .config import Config
from .connection import ConnectionManager
from .db import CredentialStore, Storage


@dataclass
class Gateway:
    storage: Storage
    directory: AccountDirectory
    audit: AuditLog
    connection: ConnectionManager
    dispatcher: BroadcastDispatcher


def create_app(overrides=None, client_factory=None) -> Flask:
    """Build the Flask app and the single connection manager it serves."""
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)
    cfg = app.config

    CORS(app, origins=cfg["CORS_ORIGINS"], supports_credentials=True)

    storage = Storage(cfg["DATA_DIR"], mongo_url=cfg["MONGO_URL"], mongo_db=cfg["MONGO_DB"])
    credentials = CredentialStore(
        cfg["AUTH_DIR"],
        session_name=cfg["SESSION_NAME"],
        secret=cfg["SESSION_SECRET"],
        storage=storage,
    )
    if client_factory is None:
        from . import bot

        client_factory = bot.client_factory(
            cfg["TELEGRAM_API_ID"],
            cfg["TELEGRAM_API_HASH"],
            password=cfg["TELEGRAM_PASSWORD"],
            qr_timeout=cfg["QR_TIMEOUT"],
            send_timeout=cfg["SEND_TIMEOUT"],
        )
    connection = ConnectionManager(
        client_factory,
        credentials,
        reconnect_base_delay=cfg["RECONNECT_BASE_DELAY"],
        reconnect_max_delay=cfg["RECONNECT_MAX_DELAY"],
    )
    audit = AuditLog(storage)
    app.extensions["broadcastgw"] = Gateway(
        storage=storage,
        directory=AccountDirectory(storage, subscription_days=cfg["SUBSCRIPTION_DAYS"]),
        audit=audit,
        connection=connection,
        dispatcher=BroadcastDispatcher(connection, audit, cfg["ADDRESS_DOMAIN"]),
    )

    from .routes import bp

    app.register_blueprint(bp)
    return app
