from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from carship.batch import BatchReport, BatchScheduler
from carship.client import StorageClient
from carship.deadletter import DeadLetterLog
from carship.errors import CarshipError
from carship.pipeline import TransferPipeline
from carship.settings import Settings
from carship.status import ConsoleStatus, StatusSink


async def upload_directory(directory: str, settings: Settings, *, sink: Optional[StatusSink] = None) -> BatchReport:
    """Pack and upload every entry of ``directory`` using ``settings``.

    Args:
        directory: Flat input directory; entries are not walked recursively.
        settings: Credential, endpoint and pipeline tuning.
        sink: Receives status events; discarded when None.
    """
    async with StorageClient(
        settings.api_key,
        settings.endpoint,
        upload_chunk_size=settings.upload_chunk_size,
    ) as client:
        pipeline = TransferPipeline(
            client,
            settings,
            sink=sink,
            dead_letter=DeadLetterLog(settings.dead_letter_path),
        )
        return await BatchScheduler(pipeline, settings.concurrency).run_all(directory)


def cmd_upload(directory: str, *, quiet: bool = False) -> bool:
    """Run a batch upload from the environment's settings; True when no file failed."""
    settings = Settings.from_env()
    report = asyncio.run(upload_directory(directory, settings, sink=ConsoleStatus(quiet=quiet)))
    for path, err in report.failures:
        print(f"failed: {path}: {err}", file=sys.stderr)
    print(
        f"Summary: uploaded={report.done} deduplicated={report.deduplicated} "
        f"dead_lettered={report.dead_lettered} failed={len(report.failures)}"
    )
    return not report.failures


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="carship",
        description="Pack each file of a directory into a CAR and upload it to nft.storage",
        epilog="The API key is read from API_KEY and an alternate endpoint from ENDPOINT (a .env file is honoured).",
    )
    ap.add_argument("directory", help="Directory whose files are uploaded (not recursive)")
    args = ap.parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    try:
        ok = cmd_upload(args.directory)
    except (CarshipError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
