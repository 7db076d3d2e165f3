# src/qfund/api/__main__.py
from __future__ import annotations

import uvicorn

from qfund.env import load_dotenv_if_present


def main() -> None:
    # Load .env early so QFUND_* vars exist before anything reads them.
    load_dotenv_if_present()

    # Import after dotenv load (config must not be read before env).
    from qfund.api.app import create_app
    from qfund.runtime.node_config import load_node_config

    cfg = load_node_config()
    uvicorn.run(create_app(), host=cfg.api_host, port=int(cfg.api_port), log_level=cfg.log_level.lower())


if __name__ == "__main__":
    main()
