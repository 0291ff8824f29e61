from ._base import NosqlBase, NosqlBaseSettings, StoreCollection, StoreProtocol

__all__ = ["NosqlBase", "NosqlBaseSettings", "StoreCollection", "StoreProtocol"]
