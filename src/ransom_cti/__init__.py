"""ransom-cti: fusion of public ransomware leak-site feeds into actors and incidents."""

__version__ = "1.0.0"
