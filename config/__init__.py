# Configuration package
from .settings import (
    ChunkingConfig,
    IndexingConfig,
    ProviderConfig,
    RetrievalConfig,
    Settings,
    load_settings,
)
