import sys

from sievekit.cli import main

sys.exit(main())
