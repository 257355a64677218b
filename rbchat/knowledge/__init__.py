"""Knowledge store — embedding search over indexed files and web pages."""

from rbchat.knowledge.store import KnowledgeEntry, KnowledgeHit, KnowledgeStore

__all__ = ["KnowledgeEntry", "KnowledgeHit", "KnowledgeStore"]
