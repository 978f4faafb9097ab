"""
Pytest configuration file.

Puts python/ on sys.path so tests can import the imagecopy package and the
scripts/ entry points without installing anything.
"""
import sys
from pathlib import Path

_python_dir = Path(__file__).parent.parent / 'python'
_python_dir_abs = str(_python_dir.absolute())
if _python_dir_abs not in sys.path:
    sys.path.insert(0, _python_dir_abs)
