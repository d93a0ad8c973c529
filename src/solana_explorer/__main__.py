"""Run the explorer API with uvicorn: ``python -m solana_explorer``."""
import argparse

import uvicorn


def main() -> None:
    parser = argparse.ArgumentParser(description="Solana explorer recent-blocks service")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8010)
    parser.add_argument("--reload", action="store_true")
    args = parser.parse_args()

    uvicorn.run(
        "solana_explorer.app:build_default_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
