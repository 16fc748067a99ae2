"""docchat_rag.pipelines

Pipeline orchestration for docchat-rag.

Pipelines hold no per-request state beyond their configured components and
are safe to share across requests.

Modules
-------
rag_pipeline
    Retrieval, context assembly and generation for a chat turn.
ingestion_pipeline
    Chunking, embedding and storage of extracted document text.
"""
