"""Allow running as: python -m tabscribe"""

from .cli import main

main()
