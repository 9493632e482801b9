"""Path constants for the snapshot builder.

- config/build.json   # default build configuration
- build_logs/         # one JSON log per build
"""

from pathlib import Path

CONFIG_DIR = Path("config")
DEFAULT_CONFIG_PATH = CONFIG_DIR / "build.json"
LOGS_DIR = Path("build_logs")              # 每次构建一个 JSON 日志
