import sys

from journalsync.main import main

sys.exit(main())
