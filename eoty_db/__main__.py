import sys

from eoty_db.cli import main

sys.exit(main())
