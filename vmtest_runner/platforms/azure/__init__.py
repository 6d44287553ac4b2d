"""Azure platform module."""

from vmtest_runner.platforms.azure.config import AzureConfig
from vmtest_runner.platforms.azure.manifest import azure_manifest
from vmtest_runner.platforms.azure.platform import AzurePlatform

__all__ = ["AzureConfig", "AzurePlatform", "azure_manifest"]
