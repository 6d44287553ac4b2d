"""Hyper-V platform manifest."""

from vmtest_runner.platforms.hyperv.config import HyperVConfig
from vmtest_runner.platforms.hyperv.platform import HyperVPlatform
from vmtest_runner.platforms.manifest import PlatformManifest

hyperv_manifest = PlatformManifest(
    config_cls=HyperVConfig,
    platform_factory=HyperVPlatform.from_config,
)
