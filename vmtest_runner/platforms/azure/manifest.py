"""Azure platform manifest."""

from vmtest_runner.platforms.azure.config import AzureConfig
from vmtest_runner.platforms.azure.platform import AzurePlatform
from vmtest_runner.platforms.manifest import PlatformManifest

azure_manifest = PlatformManifest(
    config_cls=AzureConfig,
    platform_factory=AzurePlatform.from_config,
)
