import sys

from deadline_escalator.cli import main

sys.exit(main())
