"""Entry point for running bot as module: python -m walletbot.bot"""

# Load .env file before importing anything else
from dotenv import load_dotenv
load_dotenv()

from walletbot.bot.bot import main

if __name__ == "__main__":
    main()
