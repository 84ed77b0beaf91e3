#!/usr/bin/env python3
"""
Startup script for the puzzle bot.
Loads the .env file next to this script and starts the webhook server.
"""

import sys
from pathlib import Path

# Add the current directory to Python path
current_dir = Path(__file__).parent
sys.path.insert(0, str(current_dir))

# Load environment variables from .env file if it exists
env_file = current_dir / ".env"
if env_file.exists():
    from dotenv import load_dotenv
    load_dotenv(env_file)
    print(f"Loaded environment variables from {env_file}")
else:
    print("No .env file found. Using system environment variables.")

if __name__ == "__main__":
    try:
        from slovo.bot import main
        import asyncio

        print("Starting puzzle bot...")
        asyncio.run(main())

    except KeyboardInterrupt:
        print("\nBot stopped by user.")
    except Exception as e:
        print(f"Error starting bot: {e}")
        sys.exit(1)
