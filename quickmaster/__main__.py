from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import shutil
import sys
from pathlib import Path

import uvicorn

from .jobs import JobRegistry, JobStatus, new_job_id
from .pipeline import JobLauncher, MasteringPipeline, MasteringRequest
from .presets import load_catalog
from .storage import JOB_TIMEOUT_SEC, ensure_dirs, resolve_paths


def _serve(args) -> int:
    uvicorn.run("quickmaster.server:app", host=args.host, port=args.port, log_level="info")
    return 0


def _master(args) -> int:
    infile = Path(args.infile)
    if not infile.is_file():
        print(f"input not found: {infile}", file=sys.stderr)
        return 2
    paths = resolve_paths()
    if args.outdir:
        paths = dataclasses.replace(paths, output_dir=Path(args.outdir))
    paths = ensure_dirs(paths)

    catalog = load_catalog(paths.preset_dir)
    pipeline = MasteringPipeline(JobRegistry(), catalog, paths)
    launcher = JobLauncher(pipeline, timeout_sec=JOB_TIMEOUT_SEC)

    # the pipeline consumes its input, so work on a copy
    staged = paths.upload_dir / f"{new_job_id()}{infile.suffix.lower()}"
    shutil.copy2(infile, staged)
    job = launcher.run_now(MasteringRequest(input_path=staged, original_name=infile.name, preset=args.preset))

    if job.status is JobStatus.COMPLETE and job.result is not None:
        out = job.result.to_dict(str(paths.output_dir))
        print(json.dumps(out, indent=2))
        return 0
    print(json.dumps({"status": job.status.value, "message": job.message}, indent=2))
    return 1


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(prog="quickmaster", description="One-click loudness mastering service")
    sub = ap.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("serve", help="Run the HTTP API")
    sp.add_argument("--host", default="0.0.0.0")
    sp.add_argument("--port", type=int, default=3001)
    sp.set_defaults(func=_serve)

    mp = sub.add_parser("master", help="Master one file locally and print the result")
    mp.add_argument("--infile", required=True)
    mp.add_argument("--preset", default=None, help="Preset name; unknown names use the default")
    mp.add_argument("--outdir", default=None, help="Override OUTPUT_DIR for this run")
    mp.set_defaults(func=_master)

    args = ap.parse_args(argv)
    if args.command == "master":
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
