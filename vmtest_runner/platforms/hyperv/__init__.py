"""Hyper-V platform module."""

from vmtest_runner.platforms.hyperv.config import HyperVConfig
from vmtest_runner.platforms.hyperv.manifest import hyperv_manifest
from vmtest_runner.platforms.hyperv.platform import HyperVPlatform

__all__ = ["HyperVConfig", "HyperVPlatform", "hyperv_manifest"]
