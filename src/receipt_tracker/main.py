import os

import uvicorn

from receipt_tracker.core import settings
from receipt_tracker.logger import get_logging_config


def main() -> None:
    uvicorn.run(
        "receipt_tracker.app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=settings.get_env_int("PORT", 8000, min_value=1),
        log_config=get_logging_config(),
    )


if __name__ == "__main__":
    main()
