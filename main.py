"""
入口转发

兼容 `python main.py` 的运行方式，转发到 `blunav.cli:main`。
"""

import sys

from blunav.cli import main as _cli_main


def main():
    return _cli_main()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
