"""Allow running agquota with ``python -m agquota``."""

from agquota.app import main

if __name__ == "__main__":
    main()
