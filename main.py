"""
MedMinder — Entry Point.

`python main.py` starts the bot. Reminder wake-ups and escalation timers
live on the bot's event loop, so they only fire while polling runs.
"""

import logging

from src.bot.telegram_bot import build_app

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # PTB's long polling logs every getUpdates request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logger.info("Starting MedMinder bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
