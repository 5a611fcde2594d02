import sys

from soundwave.cli import main


sys.exit(main())
