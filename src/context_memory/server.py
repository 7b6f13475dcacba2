"""FastAPI application exposing per-identity chat sessions with bounded memory."""
from __future__ import annotations

import logging
import os
import re
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Literal, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .buffer import MemoryBuffer, Turn
from .client import ContextChatClient
from .config import MemoryConfig, load_config, memory_config
from .errors import InvalidArgument
from .llm import create_from_config
from .messages import ChatModel
from .persistence import load_or_new_memory

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic request/response
# -----------------------------
class ChatRequest(BaseModel):
    identity: str = Field(default="default", description="Conversation namespace/key.")
    message: str = Field(..., min_length=1)
    followup: Optional[str] = Field(
        default=None, description="Optional instruction sent instead of the message as the final prompt section."
    )


class ChatResponse(BaseModel):
    response: str


class TurnOut(BaseModel):
    role: str
    text: str
    timestamp: str
    label: Optional[str] = None
    annotations: Dict[str, Any] = Field(default_factory=dict)
    position: int


class MemoryResponse(BaseModel):
    identity: str
    capacity: int
    version: int
    turns: List[TurnOut]


class CapacityRequest(BaseModel):
    capacity: int


class PromptRequest(BaseModel):
    identity: str = Field(default="default")
    message: str = Field(..., min_length=1)
    mode: Literal["plain", "annotated"] = "annotated"


class PromptResponse(BaseModel):
    prompt: str


# -----------------------------
# Utilities
# -----------------------------
def _safe_identity(name: str) -> str:
    # Keep it readable but filesystem-safe.
    s = re.sub(r"[^\w.\-@]+", "_", name.strip() or "default")
    return s[:128]


def _turn_out(turn: Turn) -> TurnOut:
    data = turn.to_dict()
    return TurnOut(**data)


class SessionRegistry:
    """One ContextChatClient per identity, each guarded by its own lock.

    Sessions, locks and autosave files all share one key,
    :func:`_safe_identity`, so two spellings that map to the same file
    are the same session.
    """

    def __init__(self, model: ChatModel, config: MemoryConfig) -> None:
        self.model = model
        self.config = config
        self._clients: Dict[str, ContextChatClient] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _save_file(self, key: str) -> str:
        return f"{key}.json"

    def _saved_path(self, key: str) -> Optional[Path]:
        cfg = self.config
        if not cfg.autosave:
            return None
        path = Path(cfg.save_dir or os.getcwd()) / self._save_file(key)
        return path if path.exists() else None

    def _new_buffer(self, key: str) -> MemoryBuffer:
        cfg = self.config
        if cfg.autosave:
            return load_or_new_memory(
                capacity=cfg.capacity,
                system_prompt=cfg.system_prompt,
                save_dir=cfg.save_dir,
                save_file=self._save_file(key),
            )
        return MemoryBuffer(capacity=cfg.capacity, system_prompt=cfg.system_prompt)

    def lock(self, identity: str) -> threading.Lock:
        key = _safe_identity(identity)
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def get(self, identity: str) -> ContextChatClient:
        """Return the session for ``identity``, creating (and autosaving) it if needed."""
        key = _safe_identity(identity)
        with self._guard:
            client = self._clients.get(key)
            if client is None:
                client = ContextChatClient(
                    self.model,
                    summary_n=self.config.summary_window,
                    summary_system=self.config.summary_system,
                    buffer=self._new_buffer(key),
                )
                self._clients[key] = client
            return client

    def peek(self, identity: str) -> MemoryBuffer:
        """Buffer for read-only views; never creates a new save file.

        A live session or a saved file is used when one exists. Otherwise an
        empty, unregistered buffer with the configured settings is returned.
        """
        key = _safe_identity(identity)
        with self._guard:
            client = self._clients.get(key)
        if client is not None:
            return client.memory
        if self._saved_path(key) is not None:
            return self.get(identity).memory
        return MemoryBuffer(capacity=self.config.capacity, system_prompt=self.config.system_prompt)

    def __contains__(self, identity: str) -> bool:
        return _safe_identity(identity) in self._clients

    @contextmanager
    def view(self, identity: str) -> Iterator[MemoryBuffer]:
        """Yield a read-only buffer; the lock is taken only for live sessions."""
        buf = self.peek(identity)
        if identity in self:
            with self.lock(identity):
                yield buf
        else:
            yield buf


def _make_model(cfg: Dict[str, Any]) -> ChatModel:
    if "model" not in cfg:
        raise FileNotFoundError("No model section configured.")
    return create_from_config(cfg)


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    model: Optional[ChatModel] = None,
) -> FastAPI:
    cfg = load_config(config_path)
    mem_cfg = memory_config(cfg)

    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])

    model = model or _make_model(cfg)
    sessions = SessionRegistry(model, mem_cfg)

    app = FastAPI(title="Context Memory Chat Server", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.sessions = sessions

    def _memory(identity: str, buf: MemoryBuffer) -> MemoryResponse:
        return MemoryResponse(
            identity=identity,
            capacity=buf.capacity,
            version=buf.version,
            turns=[_turn_out(t) for t in buf.read()],
        )

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "capacity": mem_cfg.capacity,
            "summary_window": mem_cfg.summary_window,
            "autosave_dir": os.path.abspath(mem_cfg.save_dir) if mem_cfg.autosave and mem_cfg.save_dir else None,
            "config_keys": list(cfg.keys()),
        }

    @app.get("/config")
    def get_config() -> JSONResponse:
        return JSONResponse(dict(cfg))

    @app.post("/chat", response_model=ChatResponse)
    def chat(req: ChatRequest):
        msg = (req.message or "").strip()
        if not msg:
            raise HTTPException(status_code=400, detail="Message cannot be empty.")

        client = sessions.get(req.identity)
        with sessions.lock(req.identity):
            text = client.chat(msg, followup=req.followup)
        return ChatResponse(response=text)

    @app.get("/memory/{identity}", response_model=MemoryResponse)
    def get_memory(identity: str):
        with sessions.view(identity) as buf:
            return _memory(identity, buf)

    @app.delete("/memory/{identity}", response_model=MemoryResponse)
    def clear_memory(identity: str):
        with sessions.lock(identity):
            client = sessions.get(identity)
            client.clear()
            return _memory(identity, client.memory)

    @app.put("/memory/{identity}/capacity", response_model=MemoryResponse)
    def set_capacity(identity: str, req: CapacityRequest):
        with sessions.lock(identity):
            try:
                buf = sessions.get(identity).memory.set_capacity(req.capacity)
            except InvalidArgument as e:
                raise HTTPException(status_code=422, detail=str(e)) from e
            return _memory(identity, buf)

    @app.post("/prompt", response_model=PromptResponse)
    def preview_prompt(req: PromptRequest):
        with sessions.view(req.identity) as buf:
            return PromptResponse(prompt=buf.compose_prompt(req.message, mode=req.mode))

    return app
