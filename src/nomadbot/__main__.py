"""Allow `python -m nomadbot` to launch the bot."""

import sys

from nomadbot.main import cli

sys.exit(cli())
