import sys

from coding_admin.cli import main

sys.exit(main())
