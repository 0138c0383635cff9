import sys

from dotenv import load_dotenv

load_dotenv()

from pollvault.cli import main

sys.exit(main())
