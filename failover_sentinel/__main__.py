"""Allow ``python -m failover_sentinel``."""

from failover_sentinel.cli import main

if __name__ == "__main__":
    main()
