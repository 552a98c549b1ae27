import logging

import uvicorn

from courier_node.config import (
    COURIER_PORT, COURIER_HOST, SSL_CERTFILE, SSL_KEYFILE,
    TLS_COMMON_NAME, TLS_CERT_DAYS, LOG_LEVEL, ensure_directories,
)
from courier_node.tls import ensure_relay_certificate

logger = logging.getLogger("courier.run")


def main():
    ensure_directories()
    ensure_relay_certificate(SSL_CERTFILE, SSL_KEYFILE, TLS_COMMON_NAME, TLS_CERT_DAYS)

    logger.info(f"Starting Courier relay on https://{COURIER_HOST}:{COURIER_PORT}")
    uvicorn.run(
        "courier_node.main:app",
        port=COURIER_PORT,
        host=COURIER_HOST,
        reload=False,
        ssl_certfile=SSL_CERTFILE,
        ssl_keyfile=SSL_KEYFILE,
        log_level=LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
