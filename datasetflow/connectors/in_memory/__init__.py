from .in_memory_connector import IN_MEMORY_DATA_STORE, InMemoryConnector, register_frame

__all__ = ["IN_MEMORY_DATA_STORE", "InMemoryConnector", "register_frame"]
