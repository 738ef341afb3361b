"""CI platform integration.

This module handles:
- Detecting which CI platform the bridge runs under
- Collecting the platform's environment into build overrides
"""

from codebuild_bridge.ci.environment import collect_overrides
from codebuild_bridge.ci.platforms import CIPlatform, detect_platform

__all__ = ["CIPlatform", "collect_overrides", "detect_platform"]
