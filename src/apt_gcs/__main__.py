"""Entry point: installed as /usr/lib/apt/methods/<scheme>"""

import sys

from apt_gcs.method.runtime import MethodRuntime


def main() -> int:
    runtime = MethodRuntime.from_environment()
    return runtime.run()


if __name__ == "__main__":
    sys.exit(main())
