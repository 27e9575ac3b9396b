from __future__ import annotations

import logging
import os

import uvicorn


def main() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("hue_extended.app:app", host="0.0.0.0", port=port, reload=False, log_level=level.lower())


if __name__ == "__main__":
    main()
