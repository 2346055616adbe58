import asyncio
import logging
import sys

import scorelight.config
import scorelight.errors
import scorelight.player


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main () -> int:

	"""
	Main entry point: ``python -m scorelight [score]``.

	Settings come from ``config.yaml`` in the working directory. A score path
	or URL given on the command line replaces the configured ``score``.
	"""

	logger.info("scorelight starting...")

	source = sys.argv[1] if len(sys.argv) > 1 else None

	try:
		config = scorelight.config.load_config()
		player = scorelight.player.Player(config)
		asyncio.run(player.run(source))
	except scorelight.errors.ScoreLoadError:
		return 1
	except ValueError as exc:
		logger.error(str(exc))
		return 2

	return 0


if __name__ == "__main__":
	sys.exit(main())
