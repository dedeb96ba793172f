import os
import sys
from pathlib import Path

os.environ.setdefault("REGISTRY_ADDRESS", "0x" + "ab" * 20)
os.environ.setdefault("REGISTRY_CURRENCY_BACKEND", "local")

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))
