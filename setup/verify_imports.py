#!/usr/bin/env python3
"""
Graceful Daemon - Import Verification Script
Verifies that all required Python imports are available and the daemon modules load.
"""

import sys
from pathlib import Path

def main():
    """Main verification function"""

    # Get the project directory (parent of setup directory)
    project_dir = Path(__file__).parent.parent

    # Add the project directory to Python path
    sys.path.insert(0, str(project_dir))

    try:
        # Test required imports
        import psutil  # noqa: F401
        import dotenv  # noqa: F401
        print("All required libraries are available")

        # Test daemon modules
        import lifecycle_daemon  # noqa: F401
        print("Daemon modules are valid")

        return 0

    except ImportError as e:
        print(f"Import Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

if __name__ == "__main__":
    sys.exit(main())
