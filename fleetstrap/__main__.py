import sys

from fleetstrap.cli import main

sys.exit(main())
