"""vibelog - sanitize and upload AI coding-assistant session transcripts."""

__version__ = '0.4.2'
