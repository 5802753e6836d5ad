"""Allow `python -m vibelog` (used for detached current-version children)."""

from vibelog.cli.main import app

if __name__ == '__main__':
    app()
