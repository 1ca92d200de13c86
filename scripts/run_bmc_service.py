"""
BMC Service Launcher

Starts the BMC change supervisor service from the bmc/ package.

Usage:
    python scripts/run_bmc_service.py --host 0.0.0.0 --port 8010

Environment Variables:
    BMC_API_PORT: API port (default: 8010)
    BMC_BIND_HOST: Bind address (default: 0.0.0.0)
    BMC_LOG_LEVEL: Logging level (default: INFO)
    BMC_LOG_FILE: Optional log file
"""
import argparse
import logging
import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import uvicorn

from shared.logging_config import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(description="Run BMC change supervisor service")
    parser.add_argument("--host", default=os.getenv("BMC_BIND_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("BMC_API_PORT", "8010")))
    parser.add_argument("--log-level", default=os.getenv("BMC_LOG_LEVEL", "INFO"))
    parser.add_argument("--log-file", default=os.getenv("BMC_LOG_FILE"))
    args = parser.parse_args()

    setup_logging("bmc", level=getattr(logging, args.log_level.upper(), logging.INFO), log_file=args.log_file)

    print("=" * 60)
    print("BMC Change Supervisor")
    print("=" * 60)
    print(f"API Address: {args.host}:{args.port}")
    print("Package: bmc/")
    print("=" * 60)

    os.environ["BMC_API_PORT"] = str(args.port)
    os.environ["BMC_BIND_HOST"] = args.host

    uvicorn.run("bmc.service:app", host=args.host, port=args.port, reload=False)


if __name__ == "__main__":
    main()
