from enum import StrEnum


class ClusterState(StrEnum):
    PENDING = 'pending'
    READY = 'ready'
    FAILED = 'failed'
