from schedulink.storage.store import ConversationStore, PersistenceFailure

__all__ = ["ConversationStore", "PersistenceFailure"]
