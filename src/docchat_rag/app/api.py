# docchat_rag/app/api.py
from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from docchat_rag.app.container import DocChatContainer, build_container
from docchat_rag.common.errors import (
    ChunkEmbeddingDimensionMismatch,
    DuplicateChunkIndex,
    InvalidQuery,
    RetrievalCancelled,
    UnknownDocument,
)
from docchat_rag.common.schemas import Message, ScoredChunk, SourceType, Visibility
from docchat_rag.config import GlobalConfig, configure_logging

app = FastAPI(title="docchat-rag API", version="0.1.0")
logger = logging.getLogger("docchat_rag.api")


class MessageModel(BaseModel):
    role: str
    content: str


class IngestRequest(BaseModel):
    filename: str
    text: str
    document_type: Optional[str] = None
    visibility: Visibility = Visibility.PRIVATE
    source_type: Optional[SourceType] = None


class DocumentResponse(BaseModel):
    id: str
    filename: str
    type: str
    size_bytes: int
    chunk_count: int
    visibility: Visibility


class DeleteResponse(BaseModel):
    document_id: str
    deleted_chunks: int


class RetrieveRequest(BaseModel):
    query: str
    accessible_document_ids: list[str] = Field(default_factory=list)
    conversation_memory: list[MessageModel] = Field(default_factory=list)
    session_id: Optional[str] = None
    top_k: Optional[int] = Field(default=None, ge=0)
    min_score: Optional[float] = None


class RankedChunk(BaseModel):
    rank: int
    chunk_id: int
    document_id: str
    document_name: str
    text: str
    score: float
    signals: dict[str, float]


class RetrieveResponse(BaseModel):
    chunks: list[RankedChunk] = Field(default_factory=list)
    context: str
    length_hint: str
    degraded: bool


class ChatRequest(BaseModel):
    session_id: str
    query: str
    accessible_document_ids: list[str] = Field(default_factory=list)


class ChatResponse(BaseModel):
    answer: str
    context: list[RankedChunk] = Field(default_factory=list)
    skipped_retrieval: bool
    degraded: bool = False


def _container() -> DocChatContainer:
    return app.state.container


def _serialize_chunks(ranked: tuple[ScoredChunk, ...]) -> list[RankedChunk]:
    names = _container().chunk_store.document_names({s.chunk.document_id for s in ranked})
    return [
        RankedChunk(
            rank=idx,
            chunk_id=s.chunk.id,
            document_id=s.chunk.document_id,
            document_name=names.get(s.chunk.document_id, s.chunk.document_id),
            text=s.chunk.text,
            score=s.combined_score,
            signals=s.signals(),
        )
        for idx, s in enumerate(ranked, start=1)
    ]


def _raise_http(route: str, e: Exception):
    if isinstance(e, InvalidQuery):
        raise HTTPException(status_code=422, detail=str(e)) from e
    if isinstance(e, UnknownDocument):
        raise HTTPException(status_code=404, detail=f"Unknown document: {e.args[0] if e.args else ''}") from e
    if isinstance(e, RetrievalCancelled):
        raise HTTPException(status_code=409, detail=str(e)) from e
    if isinstance(e, (ChunkEmbeddingDimensionMismatch, DuplicateChunkIndex, ValueError)):
        raise HTTPException(status_code=400, detail=str(e)) from e

    logger.exception("Error while handling %s", route)
    raise HTTPException(status_code=500, detail={"error": f"{type(e).__name__}: {e}"}) from e


@app.on_event("startup")
def startup():
    # Tests may install a container before startup runs.
    if getattr(app.state, "container", None) is not None:
        return
    cfg_path = os.environ.get("DOCCHAT_CONFIG", "/app/config/config.yaml")
    cfg = GlobalConfig.load(cfg_path)
    configure_logging(cfg.logging.get("level"))
    app.state.container = build_container(cfg)


@app.on_event("shutdown")
def shutdown():
    container = getattr(app.state, "container", None)
    if container is not None:
        container.close()


@app.get("/health")
def health():
    store = _container().chunk_store
    return {"status": "ok", "documents": len(store.documents()), "chunks": len(store)}


@app.post("/v1/documents", response_model=DocumentResponse, status_code=201)
def ingest_document(req: IngestRequest):
    try:
        document = _container().ingestion_pipeline.ingest_text(
            req.filename,
            req.text,
            document_type=req.document_type,
            visibility=req.visibility,
            source_type=req.source_type,
        )
    except Exception as e:
        _raise_http("POST /v1/documents", e)
    return DocumentResponse(
        id=document.id,
        filename=document.filename,
        type=document.type,
        size_bytes=document.size_bytes,
        chunk_count=document.chunk_count,
        visibility=document.visibility,
    )


@app.delete("/v1/documents/{document_id}", response_model=DeleteResponse)
def delete_document(document_id: str):
    try:
        removed = _container().ingestion_pipeline.delete_document(document_id)
    except Exception as e:
        _raise_http("DELETE /v1/documents", e)
    return DeleteResponse(document_id=document_id, deleted_chunks=removed)


@app.post("/v1/retrieve", response_model=RetrieveResponse)
def retrieve(req: RetrieveRequest):
    overrides = {k: v for k, v in (("top_k", req.top_k), ("min_score", req.min_score)) if v is not None}
    memory = [Message(role=m.role, content=m.content) for m in req.conversation_memory]
    try:
        result = _container().rag_pipeline.retrieve(
            req.query,
            req.accessible_document_ids,
            memory,
            session_id=req.session_id,
            **overrides,
        )
    except Exception as e:
        _raise_http("POST /v1/retrieve", e)
    return RetrieveResponse(
        chunks=_serialize_chunks(result.ranked_chunks),
        context=result.assembled_context.text,
        length_hint=result.length_hint.value,
        degraded=result.degraded,
    )


@app.delete("/v1/sessions/{session_id}")
def end_session(session_id: str):
    _container().rag_pipeline.end_session(session_id)
    return {"session_id": session_id, "ended": True}


@app.post("/v1/chat", response_model=ChatResponse)
def chat(req: ChatRequest):
    try:
        response = _container().rag_pipeline.chat(req.session_id, req.query, req.accessible_document_ids)
    except Exception as e:
        _raise_http("POST /v1/chat", e)
    result = response.result
    return ChatResponse(
        answer=str(response.answer),
        context=_serialize_chunks(result.ranked_chunks) if result else [],
        skipped_retrieval=response.skipped_retrieval,
        degraded=result.degraded if result else False,
    )
