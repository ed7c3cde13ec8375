import sys

from receipt_ocr.cli import main

sys.exit(main())
