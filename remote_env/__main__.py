import sys

from remote_env.main import main

sys.exit(main())
