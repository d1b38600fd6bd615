from __future__ import annotations


class ClarityComfortError(Exception):
    pass


class StorageCorrupt(ClarityComfortError):
    """A persisted document could not be read back as the expected shape."""


class CapacityExceeded(ClarityComfortError):
    def __init__(self, capacity: int):
        super().__init__(f"Collection is full ({capacity} items).")
        self.capacity = capacity


class DecodeFailure(ClarityComfortError):
    """An uploaded image could not be decoded."""


class RemoteUnavailable(ClarityComfortError):
    """The model API could not be reached or returned an unusable answer."""
