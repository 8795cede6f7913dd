from .settings import MemorySettings, Paths, Thresholds, RetrievalCfg, SummarizerCfg

__all__ = ["MemorySettings", "Paths", "Thresholds", "RetrievalCfg", "SummarizerCfg"]
