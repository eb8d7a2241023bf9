"""Retrieval subpackage: embeddings and similarity search"""

from .embeddings import EmbeddingClient
from .retriever import Retriever, RetrievalScope, SearchHit

__all__ = ['EmbeddingClient', 'Retriever', 'RetrievalScope', 'SearchHit']
