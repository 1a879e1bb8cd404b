import os
import tempfile
from pathlib import Path

import pytest

os.environ.setdefault(
    'EKSPILOT_DATABASE_URL', f'sqlite:///{Path(tempfile.mkdtemp(prefix="ekspilot-tests-"), "ekspilot.db")}'
)

from ekspilot.core.addons.addon_factory import AddonFactory, register_builtin_addons  # noqa: E402
from ekspilot.core.config import ProvisioningTimeouts  # noqa: E402
from ekspilot.core.kubernetes import ClusterHandle, ClusterSpec, ClusterState, IdentityFederation  # noqa: E402
from tests.fakes import CLUSTER_ROLE, ISSUER_URL, FakeProvider  # noqa: E402


@pytest.fixture(autouse=True)
def builtin_addons():
    AddonFactory._registry.clear()
    register_builtin_addons()
    yield
    AddonFactory._registry.clear()


@pytest.fixture
def timeouts():
    return ProvisioningTimeouts(cluster_ready=0.3, node_group_ready=0.3, addon_ready=0.5, poll_interval=0)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def cluster_spec():
    return ClusterSpec(
        name='demo',
        role=CLUSTER_ROLE,
        network_id='vpc-0123',
        subnet_ids=('subnet-private-a', 'subnet-public-a'),
    )


@pytest.fixture
def ready_cluster():
    return ClusterHandle(
        name='demo',
        resource_id='arn:aws:eks:eu-west-1:123456789012:cluster/demo',
        state=ClusterState.READY,
        version='1.20',
        network_id='vpc-0123',
        endpoint='https://demo.eks.example.com',
        identity_federation=IdentityFederation(issuer_url=ISSUER_URL),
    )
