from .kv_store import (
    InMemoryStore,
    JsonFileStore,
    KeyValueStore,
    load_selected_owner,
    save_selected_owner,
)
