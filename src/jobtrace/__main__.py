import sys

from jobtrace.cli import main

sys.exit(main())
