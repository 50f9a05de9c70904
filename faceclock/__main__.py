# faceclock/__main__.py
import sys

from .main import main

sys.exit(main())
