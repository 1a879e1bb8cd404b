from ekspilot.core.providers.aws.aws_provider import AwsConfig, AwsProvider
from ekspilot.core.providers.base_provider import BaseProvider


class ProviderFactory:
    @staticmethod
    def get_provider(provider_type: str, provider_config: dict | None = None) -> BaseProvider:
        if provider_type.lower() == 'aws':
            return AwsProvider(AwsConfig(**(provider_config or {})))

        raise ValueError(f'Unknown provider: {provider_type}')
