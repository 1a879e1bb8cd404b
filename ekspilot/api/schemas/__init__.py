from ekspilot.api.schemas.provisioning import (
    ProvisioningPlanSchema,
    ProvisioningRunCreateResponseSchema,
    ProvisioningRunCreateSchema,
    ProvisioningRunSchema,
)

__all__ = [
    'ProvisioningPlanSchema',
    'ProvisioningRunCreateResponseSchema',
    'ProvisioningRunCreateSchema',
    'ProvisioningRunSchema',
]
