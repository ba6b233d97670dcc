"""
Exception types raised by the mechanics sync service.
"""


class MechanicsSyncError(Exception):
    """Base error for the mechanics sync service"""
    pass


class BGGError(MechanicsSyncError):
    """BoardGameGeek returned an error document or never became ready"""
    pass


class CollectionNotReady(BGGError):
    """BGG queued the collection export (HTTP 202); ask again later"""
    pass


class CacheWriteError(MechanicsSyncError):
    """The cache store could not be persisted"""
    pass
