"""Run the relay: python -m pairstream"""

import uvicorn

from pairstream.api.logging_config import configure_logging
from pairstream.api.main import create_app
from pairstream.config import settings
from pairstream.server import PriceRelayServer


def main() -> None:
    relay = PriceRelayServer(settings)
    configure_logging(
        level=settings.log_level,
        json_output=settings.log_format.lower() == "json",
        server_id=relay.server_id,
    )
    # uvicorn turns SIGINT/SIGTERM into a lifespan shutdown, which closes
    # the upstream feed and every subscriber connection
    uvicorn.run(
        create_app(relay),
        host=settings.ws_host,
        port=settings.ws_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
