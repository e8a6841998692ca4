class StoreError(Exception):
    """Infrastructure failure inside the account store"""


class StoreUnavailable(StoreError):
    """Connection to the store was lost or could not be opened"""


class LockTimeout(StoreError):
    """A row hold could not be acquired within the configured lock wait"""


class ConcurrentModification(StoreError):
    """The store aborted the scope because of a deadlock or serialization failure"""
