"""
Start Governance API Server

Starts the EdgeGuard Governance REST API (default port 8010).

Environment (read from .env when present):
    EDGEGUARD_CONFIG          JSON config file, hot-reloaded on change
    EDGEGUARD_HOST            Bind address (default 0.0.0.0)
    EDGEGUARD_PORT            Port (default 8010)
    EDGEGUARD_SHADOW_STORE    memory | file | redis (default memory)
    EDGEGUARD_REDIS_URL       Redis URL for the redis shadow store
    EDGEGUARD_SLACK_WEBHOOK   Slack webhook for alert forwarding
    EDGEGUARD_LOG_LEVEL       Logging level (default INFO)
"""

import logging
import os
import sys

from dotenv import load_dotenv

from edgeguard.governance.api import build_engine, run_api

if __name__ == "__main__":
    load_dotenv()

    host = os.getenv("EDGEGUARD_HOST", "0.0.0.0")
    port = int(os.getenv("EDGEGUARD_PORT", "8010"))

    logging.basicConfig(
        level=os.getenv("EDGEGUARD_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("="*80)
    print(" EDGEGUARD GOVERNANCE API SERVER")
    print(" Agents propose trades. Governance decides whether edge exists.")
    print("="*80)
    print()
    print(f"Starting Governance API on http://{host}:{port}")
    print()
    print("Available endpoints:")
    print("  POST /evaluate             - Evaluate a trade proposal (MAIN ENDPOINT)")
    print("  POST /route                - Route a proposal without evaluating it")
    print("  GET  /decisions            - Recent decision log entries")
    print("  GET  /analytics/summary    - Decision analytics summary")
    print("  POST /health/rolling       - Rolling health over trade history")
    print("  POST /shadow/evaluate      - Shadow promotion gates")
    print("  GET  /alerts               - Recent governance alerts")
    print("  GET  /cache/stats          - Context cache statistics")
    print("  GET  /config               - Active configuration")
    print("  GET  /health               - Governance health status")
    print()
    print(f"API Documentation: http://localhost:{port}/docs")
    print()
    print("="*80)
    print()

    try:
        engine = build_engine(
            config_path=os.getenv("EDGEGUARD_CONFIG"),
            shadow_store=os.getenv("EDGEGUARD_SHADOW_STORE", "memory"),
            redis_url=os.getenv("EDGEGUARD_REDIS_URL"),
            slack_webhook=os.getenv("EDGEGUARD_SLACK_WEBHOOK"),
        )
        run_api(host=host, port=port, instance=engine)
    except KeyboardInterrupt:
        print("\n\nGovernance API server stopped.")
        sys.exit(0)
    except Exception as e:
        print(f"\n\nError starting Governance API: {e}")
        sys.exit(1)
