"""Source tree packaging."""

from codebuild_bridge.source.archive import package_source

__all__ = ["package_source"]
