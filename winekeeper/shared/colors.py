"""
Terminal colour codes used by the CLI frontend.
"""

COLOR_RESET = '\033[0m'
COLOR_INFO = '\033[96m'
COLOR_SUCCESS = '\033[92m'
COLOR_WARNING = '\033[93m'
COLOR_ERROR = '\033[91m'
