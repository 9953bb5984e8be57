"""python -m scan_alerts"""

from .cli import main

raise SystemExit(main())
