"""Git branch tidying tool.

Features:
- Preview local branches that are merged and stale
- Delete them after confirmation
- Protected branch names, glob patterns and regular expressions
- Project and global TOML configuration
"""

__version__ = "0.1.0"
