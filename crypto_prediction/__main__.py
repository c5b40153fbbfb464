"""Allow running as ``python -m crypto_prediction``."""

from crypto_prediction.cli import main

main()
