"""
taskbot — Entry Point.

Single entry point: `python main.py` starts the WhatsApp webhook server.
"""

import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from taskbot.bot.whatsapp_bot import main

if __name__ == "__main__":
    main()
