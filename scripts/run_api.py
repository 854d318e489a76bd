#!/usr/bin/env python3
"""
FastAPIサーバーを起動するエントリポイント

Usage:
  python scripts/run_api.py [--host 0.0.0.0] [--port 8000] [--workspace <file>] [--reload]
"""
import argparse
import os
import sys
from pathlib import Path

# プロジェクトルートをPYTHONPATHに追加
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import uvicorn
from dotenv import load_dotenv


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Courier engine API server")
    parser.add_argument("--host", type=str, default=os.environ.get("COURIER_API_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("COURIER_API_PORT", "8000")))
    parser.add_argument("--workspace", type=str, help="Workspace file (YAML / JSON) served by the API")
    parser.add_argument("--reload", action="store_true", help="開発時の自動リロード")
    return parser


if __name__ == "__main__":
    load_dotenv()
    args = _build_parser().parse_args()
    if args.workspace:
        # api.main は import 時にこの環境変数を読む
        os.environ["COURIER_WORKSPACE_FILE"] = str(Path(args.workspace).resolve())
    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
