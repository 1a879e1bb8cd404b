import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import boto3
from botocore.exceptions import ClientError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ekspilot.core.addons.base_addon import BaseAddon
from ekspilot.core.config import AWS_REGION, PATH_TO_KUBECONFIGS
from ekspilot.core.exceptions import BackendError, ThrottlingError
from ekspilot.core.kubernetes import (
    ClusterHandle,
    ClusterSpec,
    ClusterState,
    IdentityFederation,
    NodeGroupSpec,
    PlacementKind,
    ResourceStatus,
)
from ekspilot.core.kubernetes.kubernetes_cluster import KubernetesCluster
from ekspilot.core.providers.base_provider import (
    AddonDescription,
    BaseProvider,
    ClusterDescription,
    NodeGroupDescription,
    Subnet,
)
from ekspilot.core.template_loader import template_loader

CLUSTER_ADMIN_POLICY_ARN = 'arn:aws:eks::aws:cluster-access-policy/AmazonEKSClusterAdminPolicy'
OIDC_CLIENT_ID = 'sts.amazonaws.com'

PUBLIC_SUBNET_TAG = 'kubernetes.io/role/elb'
PRIVATE_SUBNET_TAG = 'kubernetes.io/role/internal-elb'

THROTTLING_ERROR_CODES = ('Throttling', 'ThrottlingException', 'TooManyRequestsException', 'RequestLimitExceeded')
NOT_FOUND_ERROR_CODES = ('ResourceNotFoundException', 'NoSuchEntity')

CLUSTER_STATES = {
    'ACTIVE': ClusterState.READY,
    'CREATING': ClusterState.PENDING,
    'UPDATING': ClusterState.PENDING,
    'PENDING': ClusterState.PENDING,
    'FAILED': ClusterState.FAILED,
    'DELETING': ClusterState.FAILED,
}

NODE_GROUP_STATES = {
    'ACTIVE': ResourceStatus.READY,
    'CREATING': ResourceStatus.PENDING,
    'UPDATING': ResourceStatus.PENDING,
    'CREATE_FAILED': ResourceStatus.FAILED,
    'DEGRADED': ResourceStatus.FAILED,
    'DELETING': ResourceStatus.FAILED,
    'DELETE_FAILED': ResourceStatus.FAILED,
}


@dataclass
class AwsConfig:
    region: str = AWS_REGION
    profile: str | None = None

    def to_dict(self) -> dict:
        return {
            'region': self.region,
            'profile': self.profile,
        }


class AwsProvider(BaseProvider):
    name = 'aws'

    def __init__(self, config: AwsConfig, session: boto3.Session | None = None) -> None:
        self._config = config

        session = session or boto3.Session(region_name=config.region, profile_name=config.profile)

        self._eks = session.client('eks')
        self._ec2 = session.client('ec2')
        self._iam = session.client('iam')

        self._kubernetes_clusters: dict[str, KubernetesCluster] = {}

        super().__init__()

    async def _call(
        self, operation: str, resource: str, method: Callable, not_found_ok: bool = False, **kwargs: Any
    ) -> dict | None:
        try:
            return await self._call_with_retry(operation, resource, method, not_found_ok, **kwargs)
        except ThrottlingError as e:
            raise BackendError(operation, resource, 'request throttled, retries exhausted') from e

    @retry(
        retry=retry_if_exception_type(ThrottlingError),
        wait=wait_exponential(multiplier=0.5, max=10),
        stop=stop_after_attempt(5),
        reraise=True,
    )
    async def _call_with_retry(
        self, operation: str, resource: str, method: Callable, not_found_ok: bool, **kwargs: Any
    ) -> dict | None:
        try:
            return await asyncio.to_thread(method, **kwargs)
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code')

            if code in THROTTLING_ERROR_CODES:
                self._logger.warning(f'{operation} on {resource} throttled, retrying...')
                raise ThrottlingError(operation) from e

            if not_found_ok and code in NOT_FOUND_ERROR_CODES:
                return None

            self._logger.exception(f'{operation} failed for {resource}: {e}', exc_info=False)
            raise BackendError(operation, resource, e) from e

    async def list_subnets(self, network_id: str) -> list[Subnet]:
        response = await self._call(
            'describe_subnets',
            network_id,
            self._ec2.describe_subnets,
            Filters=[{'Name': 'vpc-id', 'Values': [network_id]}],
        )

        subnets = []
        for subnet in response.get('Subnets', []):
            tags = {x['Key']: x['Value'] for x in subnet.get('Tags', [])}

            if PUBLIC_SUBNET_TAG in tags:
                is_public = True
            elif PRIVATE_SUBNET_TAG in tags:
                is_public = False
            else:
                is_public = bool(subnet.get('MapPublicIpOnLaunch'))

            subnets.append(Subnet(id=subnet['SubnetId'], is_public=is_public, availability_zone=subnet.get('AvailabilityZone')))

        return subnets

    async def role_exists(self, role_arn: str) -> bool:
        role_name = role_arn.split('/')[-1]

        response = await self._call('get_role', role_arn, self._iam.get_role, not_found_ok=True, RoleName=role_name)

        return response is not None

    async def describe_cluster(self, name: str) -> ClusterDescription | None:
        response = await self._call('describe_cluster', name, self._eks.describe_cluster, not_found_ok=True, name=name)

        if response is None:
            return None

        cluster = response['cluster']

        return ClusterDescription(
            name=cluster['name'],
            resource_id=cluster['arn'],
            state=CLUSTER_STATES.get(cluster['status'], ClusterState.PENDING),
            version=cluster['version'],
            role_arn=cluster['roleArn'],
            endpoint=cluster.get('endpoint'),
            certificate_authority=cluster.get('certificateAuthority', {}).get('data'),
        )

    async def create_cluster(self, spec: ClusterSpec) -> None:
        await self._call(
            'create_cluster',
            spec.name,
            self._eks.create_cluster,
            name=spec.name,
            version=str(spec.version),
            roleArn=spec.role.arn,
            resourcesVpcConfig={
                'subnetIds': list(spec.subnet_ids),
                'endpointPublicAccess': True,
                'endpointPrivateAccess': True,
            },
            accessConfig={'authenticationMode': 'API_AND_CONFIG_MAP'},
            tags=dict(spec.tags),
        )

        self._logger.info(f'Cluster {spec.name} creation requested')

    async def resolve_identity_federation(self, cluster_name: str) -> IdentityFederation | None:
        response = await self._call('describe_cluster', cluster_name, self._eks.describe_cluster, name=cluster_name)

        issuer_url = response['cluster'].get('identity', {}).get('oidc', {}).get('issuer')

        if not issuer_url:
            return None

        federation = IdentityFederation(issuer_url=issuer_url)

        providers = await self._call(
            'list_open_id_connect_providers', cluster_name, self._iam.list_open_id_connect_providers
        )

        for provider in providers.get('OpenIDConnectProviderList', []):
            if provider['Arn'].endswith(federation.issuer_host):
                return IdentityFederation(issuer_url=issuer_url, provider_arn=provider['Arn'])

        created = await self._call(
            'create_open_id_connect_provider',
            issuer_url,
            self._iam.create_open_id_connect_provider,
            Url=issuer_url,
            ClientIDList=[OIDC_CLIENT_ID],
        )

        self._logger.info(f'Registered OIDC provider for cluster {cluster_name}')

        return IdentityFederation(issuer_url=issuer_url, provider_arn=created['OpenIDConnectProviderArn'])

    async def bind_master_role(self, cluster_name: str, role_arn: str) -> bool:
        try:
            await self._call(
                'create_access_entry',
                role_arn,
                self._eks.create_access_entry,
                clusterName=cluster_name,
                principalArn=role_arn,
            )
            created = True
        except BackendError as e:
            if not isinstance(e.cause, ClientError) or e.cause.response['Error']['Code'] != 'ResourceInUseException':
                raise

            created = False

        await self._call(
            'associate_access_policy',
            role_arn,
            self._eks.associate_access_policy,
            clusterName=cluster_name,
            principalArn=role_arn,
            policyArn=CLUSTER_ADMIN_POLICY_ARN,
            accessScope={'type': 'cluster'},
        )

        return created

    async def describe_node_group(self, cluster_name: str, name: str) -> NodeGroupDescription | None:
        response = await self._call(
            'describe_nodegroup',
            f'{cluster_name}/{name}',
            self._eks.describe_nodegroup,
            not_found_ok=True,
            clusterName=cluster_name,
            nodegroupName=name,
        )

        if response is None:
            return None

        node_group = response['nodegroup']
        scaling = node_group.get('scalingConfig', {})

        return NodeGroupDescription(
            name=node_group['nodegroupName'],
            status=NODE_GROUP_STATES.get(node_group['status'], ResourceStatus.PENDING),
            capacity_type=node_group.get('capacityType', 'ON_DEMAND'),
            instance_types=tuple(node_group.get('instanceTypes') or ()),
            min_size=scaling.get('minSize', 0),
            desired_size=scaling.get('desiredSize', 0),
            max_size=scaling.get('maxSize', 0),
            labels=node_group.get('labels') or {},
            subnet_ids=tuple(node_group.get('subnets') or ()),
            scaling_group_names=tuple(x['name'] for x in node_group.get('resources', {}).get('autoScalingGroups', [])),
            health_issues=tuple(
                f'{x.get("code")}: {x.get("message")}' for x in node_group.get('health', {}).get('issues', [])
            ),
        )

    async def create_node_group(
        self, cluster_name: str, spec: NodeGroupSpec, placement: PlacementKind, subnet_ids: tuple[str, ...]
    ) -> None:
        kwargs: dict[str, Any] = {
            'clusterName': cluster_name,
            'nodegroupName': spec.name,
            'scalingConfig': {
                'minSize': spec.capacity.min_size,
                'desiredSize': spec.capacity.desired_size,
                'maxSize': spec.capacity.max_size,
            },
            'subnets': list(subnet_ids),
            'nodeRole': spec.worker_role.arn,
            'capacityType': str(spec.capacity_type),
            'diskSize': spec.disk_size,
            'labels': dict(spec.labels),
            'tags': {
                'ekspilot/placement': str(placement),
                'k8s.io/cluster-autoscaler/enabled': 'true',
                f'k8s.io/cluster-autoscaler/{cluster_name}': 'owned',
            },
        }

        if spec.instance_types:
            kwargs['instanceTypes'] = list(spec.instance_types)

        await self._call('create_nodegroup', f'{cluster_name}/{spec.name}', self._eks.create_nodegroup, **kwargs)

        self._logger.info(f'Node group {spec.name} creation requested on {cluster_name}')

    def _write_kubeconfig(self, cluster: ClusterHandle) -> Path:
        PATH_TO_KUBECONFIGS.mkdir(parents=True, exist_ok=True)

        kubeconfig_path = Path(PATH_TO_KUBECONFIGS, f'{cluster.name}.yaml')
        kubeconfig_path.write_text(
            template_loader.render_template(
                'kubeconfig.yaml',
                'kubernetes',
                {
                    'cluster_name': cluster.name,
                    'endpoint': cluster.endpoint,
                    'certificate_authority': cluster.certificate_authority,
                    'region': self._config.region,
                },
            )
        )

        return kubeconfig_path

    def _get_kubernetes_cluster(self, cluster: ClusterHandle) -> KubernetesCluster:
        if cluster.name not in self._kubernetes_clusters:
            self._kubernetes_clusters[cluster.name] = KubernetesCluster(cluster.name, self._write_kubeconfig(cluster))

        return self._kubernetes_clusters[cluster.name]

    async def describe_addon(self, cluster: ClusterHandle, addon: BaseAddon) -> AddonDescription | None:
        try:
            kubernetes_cluster = self._get_kubernetes_cluster(cluster)
            revision = await kubernetes_cluster.get_release(addon.release_name, addon.namespace)
        except Exception as e:
            self._logger.exception(f'Failed to read release {addon.release_name}: {e}', exc_info=False)
            raise BackendError('get_release', addon.release_name, e) from e

        if revision is None:
            return None

        return AddonDescription(
            release_name=addon.release_name,
            namespace=addon.namespace,
            chart_name=addon.get_helm_chart().name,
            status=getattr(revision.status, 'value', revision.status),
            revision=revision.revision,
        )

    async def install_addon(self, cluster: ClusterHandle, addon: BaseAddon, timeout: float) -> dict[str, Any]:
        try:
            kubernetes_cluster = self._get_kubernetes_cluster(cluster)

            await asyncio.to_thread(addon.run_pre_install_actions, kubernetes_cluster)

            revision = await kubernetes_cluster.install_or_upgrade_chart(
                addon.release_name,
                addon.get_helm_chart(),
                addon.chart_values(cluster, self._config.region),
                addon.namespace,
                timeout,
            )

            await asyncio.to_thread(addon.run_post_install_actions, kubernetes_cluster)
        except BackendError:
            raise
        except Exception as e:
            self._logger.exception(f'Failed to install addon {addon.name}: {e}', exc_info=False)
            raise BackendError('install_addon', addon.release_name, e) from e

        return {'revision': revision.revision, 'release_status': getattr(revision.status, 'value', revision.status)}
