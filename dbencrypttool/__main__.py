import sys

from dbencrypttool.cli import main

sys.exit(main())
