import sys
if sys.platform == "win32":
    import asyncio
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, UploadFile, File, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.requests import Request

from .accounts import CredentialStore, LoginRequest, check_login_rate_limit
from .broadcast import BroadcastChannel
from .coordinator import SessionCoordinator
from .message_store import MessageStore, HISTORY_LIMIT
from .participant_log import ParticipantLog
from .presence import PresenceRegistry
from .uploads import MAX_IMAGE_SIZE, ImageRejected, public_url, store_image
from .ws_handler import websocket_chat as _websocket_chat

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    _credentials.ensure_defaults()
    logger.info("Chat server ready, data in %s", DATA_DIR)
    yield
    await _channel.close()


app = FastAPI(lifespan=lifespan)

# --- CORS Configuration ---

def _get_cors_origins() -> list[str]:
    """Get CORS origins from environment variable or use default."""
    cors_origins_str = os.environ.get("CHATROOM_CORS_ORIGINS", "http://localhost:3000")
    origins = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]
    return origins if origins else ["http://localhost:3000"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

BASE_DIR = Path(__file__).resolve().parent.parent
PUBLIC_DIR = BASE_DIR / "public"
DATA_DIR = Path(os.environ.get("CHATROOM_DATA_DIR", str(BASE_DIR / "data")))
UPLOADS_DIR = Path(os.environ.get("CHATROOM_UPLOADS_DIR", str(BASE_DIR / "uploads")))

DATA_DIR.mkdir(parents=True, exist_ok=True)
UPLOADS_DIR.mkdir(parents=True, exist_ok=True)

# --- Composition root ---

_message_store = MessageStore(DATA_DIR / "messages.json")
_participant_log = ParticipantLog(DATA_DIR / "users.json")
_credentials = CredentialStore(DATA_DIR / "accounts.json")
_presence = PresenceRegistry()
_channel = BroadcastChannel()
_coordinator = SessionCoordinator(
    message_store=_message_store,
    presence=_presence,
    channel=_channel,
    participant_log=_participant_log,
)
_uploads_dir = UPLOADS_DIR


# --- API Routes ---

@app.get("/api/health")
async def api_health():
    return {"status": "ok"}


@app.post("/api/login")
async def api_login(req: LoginRequest, request: Request):
    if not req.username or not req.password:
        raise HTTPException(status_code=400, detail="Username and password are required")
    client_ip = request.client.host if request.client else "unknown"
    check_login_rate_limit(client_ip)
    if not await _credentials.verify(req.username, req.password):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return {"success": True, "message": "Login successful"}


@app.get("/api/messages")
async def api_messages():
    messages = await _message_store.recent(HISTORY_LIMIT)
    return [m.to_dict() for m in messages]


@app.post("/api/upload")
async def api_upload(image: UploadFile | None = File(None)):
    if image is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    # Read one byte past the limit so oversized files are detectable
    data = await image.read(MAX_IMAGE_SIZE + 1)
    try:
        stored_name = await asyncio.to_thread(
            store_image, _uploads_dir, image.filename, image.content_type, data
        )
    except ImageRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return {"success": True, "filename": stored_name, "url": public_url(stored_name)}


# --- WebSocket chat ---

@app.websocket("/ws/chat")
async def websocket_chat(websocket: WebSocket):
    await _websocket_chat(websocket, coordinator=_coordinator, channel=_channel)


# --- Static files (mounted last so they never shadow API routes) ---

app.mount("/uploads", StaticFiles(directory=str(UPLOADS_DIR)), name="uploads")

if PUBLIC_DIR.is_dir():
    app.mount("/", StaticFiles(directory=str(PUBLIC_DIR), html=True), name="public")
