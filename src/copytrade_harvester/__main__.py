import sys

from copytrade_harvester.cli import main

sys.exit(main())
