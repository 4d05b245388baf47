"""ReelSync: media server catalog mirroring and enrichment."""

from src.utils.logging import Logger, get_logger
from src.utils.terminal import supports_utf8
from src.utils.version import get_git_hash, get_pyproject_version

__author__ = "ReelSync Contributors"
__license__ = "MIT"
__version__ = get_pyproject_version()
__git_hash__ = get_git_hash()

__all__ = ["REELSYNC_HEADER", "__version__", "log"]

if supports_utf8():
    REELSYNC_HEADER = f"""
╔═══════════════════════════════════════════════════════════════════════════════╗
║                                R E E L S Y N C                                ║
╠═══════════════════════════════════════════════════════════════════════════════╣
║                                                                               ║
║  Version: {__version__:<68}║
║  Git Hash: {__git_hash__:<67}║
║  License: {__license__:<68}║
║                                                                               ║
╚═══════════════════════════════════════════════════════════════════════════════╝
    """.strip()
else:
    REELSYNC_HEADER = f"""
+-------------------------------------------------------------------------------+
|                                R E E L S Y N C                                |
+-------------------------------------------------------------------------------+
|                                                                               |
|  Version: {__version__:<68}|
|  Git Hash: {__git_hash__:<67}|
|  License: {__license__:<68}|
|                                                                               |
+-------------------------------------------------------------------------------+
    """.strip()

log: Logger = get_logger()
