"""Remote build lifecycle.

This module handles:
- Request composition and submission
- Completion polling and log tailing
- Result archival, artifact retrieval and status mapping
"""

from codebuild_bridge.builds.service import CodeBuildService

__all__ = ["CodeBuildService"]

# Access submodules directly: codebuild_bridge.builds.logs, etc.
