"""
Retrieval layer of docchat-rag.

This package covers everything needed to turn extracted text into
searchable chunks and to rank the most relevant chunks for a query.

Submodules
----------
text_splitter
    Overlapping window chunking.
embedder
    Embedding providers and the timeout-bounded embedding client.
chunk_store
    In-memory document and chunk registry.
document_store
    Persistence and conversation-history collaborators.
query_analysis
    Tokenisation, stopwords and answer-shape checks.
response_length
    Requested answer length classifier.
scorer
    Six-signal relevance scoring.
retriever
    Ranking over the accessible chunks of a store.
types
    Collaborator protocols and the cancellation token.
"""
