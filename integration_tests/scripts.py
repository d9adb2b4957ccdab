import os
import subprocess
import sys

from dotenv import load_dotenv

REQUIRED_ENV_VARS = [
    "TELEGRAM_TEST_API_ID",
    "TELEGRAM_TEST_API_HASH",
    "TELEGRAM_TEST_PHONE",
    "TELEGRAM_MAIN_BOT_USERNAME",
]

FLOW_SCRIPTS = [
    "integration_tests/telegram_bot/capture_flows.py",
    "integration_tests/telegram_bot/ledger_flows.py",
]


def _ensure_env() -> None:
    load_dotenv()
    missing = [var for var in REQUIRED_ENV_VARS if not os.environ.get(var)]
    if missing:
        raise SystemExit(
            "Cannot run Telegram integration tests. "
            f"Set the following env vars: {', '.join(sorted(missing))}"
        )


def main() -> None:
    _ensure_env()
    results: list[tuple[str, int]] = []
    for script in FLOW_SCRIPTS:
        print(f"Running {script}")
        returncode = subprocess.call([sys.executable, script])
        if returncode != 0:
            print(f"[ERROR] {script} exited with code {returncode}")
        results.append((script, returncode))

    if any(returncode != 0 for _, returncode in results):
        print("\nIntegration test summary:")
        for script, returncode in results:
            status = "OK" if returncode == 0 else f"FAIL ({returncode})"
            print(f" - {script}: {status}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
