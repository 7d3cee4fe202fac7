import sys
import asyncio
import logging
from typing import List, Optional

from .common import RunnerConfig
from .error import BridgeTestError
from .runner import run_from_config


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    logging.basicConfig(
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
        datefmt='%H:%M:%S',
        level=logging.DEBUG if '--debug' in argv else logging.INFO)
    # Silence unwanted noise in logs produced at the DEBUG level
    logging.getLogger('urllib3.connectionpool').setLevel(logging.WARNING)
    logging.getLogger('web3').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)

    config = RunnerConfig.from_args(argv)
    try:
        asyncio.run(run_from_config(config))
    except BridgeTestError as e:
        logging.critical("%s", e)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
