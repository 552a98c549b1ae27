import asyncio

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from pydantic import BaseModel
import logging

from courier_node.config import ensure_directories, MAX_MESSAGE_SIZE, CORS_ORIGINS
from courier_node.channel import Channel
from courier_node.codec import TransportRecord, decode
from courier_node.database import get_db
from courier_node.directory import Directory
from courier_node.errors import (
    CodecError,
    DirectoryLookupError,
    IdentityConflictError,
    KeyFormatError,
)
from courier_node.store import MessageStore, conversation_id_for

logger = logging.getLogger(__name__)


class PublicKeyBinding(BaseModel):
    public_key: str


app = FastAPI(title="Courier Relay", version="1.0.0")

channel = Channel()
directory = Directory()
store = MessageStore(channel=channel)

# --------------------------------------------
# CORS
# --------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --------------------------------------------
# Middleware: message size limit
# --------------------------------------------
@app.middleware("http")
async def limit_message_size(request: Request, call_next):
    if request.method == "POST" and request.url.path.startswith("/conversations/"):
        cl = request.headers.get("content-length")
        if cl is not None and cl.isdigit() and int(cl) > MAX_MESSAGE_SIZE:
            return JSONResponse(
                status_code=413,
                content={"error": f"Message too large (max {MAX_MESSAGE_SIZE} bytes)"}
            )

    return await call_next(request)


@app.on_event("startup")
def startup():
    ensure_directories()
    get_db()
    logger.info("Relay ready")


# ---------------------------------------------------------
# HEALTH CHECK
# ---------------------------------------------------------
@app.get("/health")
def health_check():
    checks = {"database": False}

    try:
        db = get_db()
        db.execute("SELECT 1").fetchone()
        checks["database"] = True
    except Exception as e:
        logger.error(f"Health check DB failed: {e}")

    all_ok = all(checks.values())
    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={"status": "healthy" if all_ok else "degraded", "checks": checks}
    )


# ---------------------------------------------------------
# DIRECTORY
# ---------------------------------------------------------
@app.put("/directory/{identity}")
def bind_public_key(identity: str, req: PublicKeyBinding):
    try:
        created = directory.put_public_key(identity, req.public_key)
    except KeyFormatError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except IdentityConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return JSONResponse(
        status_code=201 if created else 200,
        content={"status": "ok", "identity": identity, "created": created},
    )


@app.get("/directory/{identity}")
def lookup_public_key(identity: str):
    try:
        public_key = directory.get_public_key(identity)
    except DirectoryLookupError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"identity": identity, "public_key": public_key}


# ---------------------------------------------------------
# CONVERSATIONS
# ---------------------------------------------------------
@app.post("/conversations/{conversation_id}/messages")
def post_message(conversation_id: str, record: TransportRecord):
    # the relay cannot read the envelope, it only checks its shape
    try:
        decode(record)
    except CodecError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if conversation_id_for(record.sender_id, record.recipient_id) != conversation_id:
        raise HTTPException(status_code=422, detail="record does not belong to this conversation")

    message_id = store.append_record(record)
    return JSONResponse(
        status_code=201,
        content={"status": "ok", "id": message_id, "conversation_id": conversation_id},
    )


def _batch_payload(conversation_id: str, records) -> dict:
    return {
        "conversation_id": conversation_id,
        "count": len(records),
        "messages": [r.to_dict() for r in records],
    }


@app.get("/conversations/{conversation_id}/messages")
def list_messages(conversation_id: str):
    return _batch_payload(conversation_id, store.list_records(conversation_id))


@app.websocket("/conversations/{conversation_id}/stream")
async def stream_messages(websocket: WebSocket, conversation_id: str):
    """
    Push channel for one conversation. The current batch is sent on connect,
    then the full ordered batch again after every append.
    """
    await websocket.accept()

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    # publish() runs on the worker thread that handled the POST
    sub = channel.subscribe(
        conversation_id,
        lambda batch: loop.call_soon_threadsafe(queue.put_nowait, batch),
    )
    logger.info(f"Stream session {sub.session} opened for {conversation_id}")

    async def forward():
        await websocket.send_json(_batch_payload(conversation_id, store.list_records(conversation_id)))
        while True:
            batch = await queue.get()
            await websocket.send_json(_batch_payload(conversation_id, batch))

    sender = asyncio.create_task(forward())
    try:
        while True:
            # clients only ever close; anything they send is ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        sub.cancel()
        sender.cancel()
        logger.info(f"Stream session {sub.session} closed for {conversation_id}")


# ---------------------------------------------------------
# IDENTITIES
# ---------------------------------------------------------
@app.get("/identities/{identity}/conversations")
def list_conversations(identity: str):
    conversations = store.list_conversations(identity)
    return {
        "identity": identity,
        "count": len(conversations),
        "conversations": conversations,
    }
