import sys

from download_router.runtime import main


if __name__ == "__main__":
    sys.exit(main())
