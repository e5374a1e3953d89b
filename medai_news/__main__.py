from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from .config import PipelineConfig
from .core import Pipeline
from .exceptions import ConfigError, StoreUnavailableError
from .store import SupabaseTable

logger = logging.getLogger("medai_news")


def main() -> int:
    load_dotenv()
    logging.basicConfig(
        level=(os.getenv("MEDAI_LOG_LEVEL") or "INFO").upper(),
        format="%(levelname)s: %(message)s",
    )

    try:
        config = PipelineConfig.from_env().validate()
        if not config.supabase_url or not config.supabase_key:
            raise ConfigError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set.")
        table = SupabaseTable.connect(config.supabase_url, config.supabase_key, config.table)
        stats = Pipeline(config, table).run()
    except (ConfigError, StoreUnavailableError) as e:
        logger.error("%s", e)
        return 1

    print(stats.summary())
    return 0


if __name__ == "__main__":
    sys.exit(main())
