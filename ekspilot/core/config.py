import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(Path(__file__).parent.parent.parent.absolute(), '.env'))

PATH_TO_KUBECONFIGS = Path(os.getenv('EKSPILOT_KUBECONFIG_DIR', Path(Path(__file__).absolute().parent.parent.parent, 'output')))

DATABASE_URL = os.getenv('EKSPILOT_DATABASE_URL', f'sqlite:///{Path(Path(__file__).parent.parent.parent.absolute(), "data", "ekspilot.db")}')

AWS_REGION = os.getenv('AWS_REGION', 'eu-west-1')

CLUSTER_READY_TIMEOUT = float(os.getenv('EKSPILOT_CLUSTER_READY_TIMEOUT', '1800'))
NODE_GROUP_READY_TIMEOUT = float(os.getenv('EKSPILOT_NODE_GROUP_READY_TIMEOUT', '1200'))
ADDON_READY_TIMEOUT = float(os.getenv('EKSPILOT_ADDON_READY_TIMEOUT', '600'))
POLL_INTERVAL = float(os.getenv('EKSPILOT_POLL_INTERVAL', '15'))


@dataclass(frozen=True)
class ProvisioningTimeouts:
    """Upper bounds (in seconds) for every wait on backend readiness."""

    cluster_ready: float = CLUSTER_READY_TIMEOUT
    node_group_ready: float = NODE_GROUP_READY_TIMEOUT
    addon_ready: float = ADDON_READY_TIMEOUT
    poll_interval: float = POLL_INTERVAL
