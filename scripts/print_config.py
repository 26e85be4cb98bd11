from __future__ import annotations

import json

from imagerouter.core.config.loader import load_settings


def main() -> None:
    settings = load_settings()
    print(json.dumps(settings.model_dump(), indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
