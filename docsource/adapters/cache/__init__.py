from ._base import CacheBase, CacheBaseSettings, CacheProtocol

__all__ = ["CacheBase", "CacheBaseSettings", "CacheProtocol"]
