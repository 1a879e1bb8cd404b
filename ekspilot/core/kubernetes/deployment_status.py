from enum import StrEnum


class ResourceStatus(StrEnum):
    READY = 'ready'
    PENDING = 'pending'
    FAILED = 'failed'
    ALREADY_INSTALLED = 'already_installed'

    @property
    def is_successful(self) -> bool:
        return self in (ResourceStatus.READY, ResourceStatus.ALREADY_INSTALLED)
