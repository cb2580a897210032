import sys

from tick_city.cli import main

sys.exit(main())
