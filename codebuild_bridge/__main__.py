"""Allow ``python -m codebuild_bridge``."""

from codebuild_bridge.cli import app

if __name__ == "__main__":
    app()
