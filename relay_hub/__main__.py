"""Entry point for running the hub via python -m relay_hub"""

import asyncio

from relay_hub.runtime import main

if __name__ == "__main__":
    asyncio.run(main())
