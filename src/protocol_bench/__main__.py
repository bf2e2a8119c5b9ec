import sys

from protocol_bench.cli import main

sys.exit(main())
