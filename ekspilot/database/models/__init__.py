from ekspilot.database.models.base_model import BaseModel
from ekspilot.database.models.provisioning_run import ProvisioningRun

__all__ = ['BaseModel', 'ProvisioningRun']
