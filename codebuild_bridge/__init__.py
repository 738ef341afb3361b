"""CodeBuild Bridge - run an AWS CodeBuild project from a CI pipeline step.

This package packages the working tree, submits a build carrying the CI
environment, relays the build log while it runs, and turns the final build
status into the exit code of the calling step.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
