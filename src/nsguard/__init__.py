"""nsguard package"""

# Re-export the config subpackage so dotted paths like 'nsguard.config.*'
# work with tooling that traverses attributes instead of using importlib.
from . import config as config
