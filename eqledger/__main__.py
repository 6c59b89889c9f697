import sys

from eqledger.cli import main

sys.exit(main())
