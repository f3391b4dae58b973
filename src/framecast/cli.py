"""CLI for rendering an export manifest and inspecting encoder support.

Usage:
    # Render a manifest
    framecast render --manifest export.yaml --output /tmp/out.mp4

    # Render as fast as possible (no wall-clock pacing)
    framecast render --manifest export.yaml --output /tmp/out.mp4 --no-realtime

    # Validate only (no rendering)
    framecast render --manifest export.yaml --validate

    # Show which (codec, container) pairs the local ffmpeg supports
    framecast encoders
"""

import argparse
import asyncio
import dataclasses
import logging
import time

from .errors import EncoderUnsupported
from .manifest import load_export_manifest, validate_manifest_paths
from .scheduler import Composition
from .sink import ENCODER_CANDIDATES, ffmpeg_exe, select_candidate, supported_encoders


def _progress_printer(step: float = 0.1):
    """on_progress callback printing every `step` of completion."""
    state = {"next": step}

    def report(fraction: float):
        if fraction + 1e-9 >= state["next"]:
            print(f"  RENDER {fraction * 100:5.1f}%", flush=True)
            while state["next"] <= fraction + 1e-9:
                state["next"] += step

    return report


def render_manifest(manifest_path: str, output_path: str, realtime: bool = True):
    """Load a manifest, run one export session, and write the result.

    Returns:
        Path the container was written to. Its suffix follows the
        negotiated container, which may differ from output_path's.
    """
    manifest = load_export_manifest(manifest_path)
    validate_manifest_paths(manifest)

    config = manifest["config"]
    if config.realtime != realtime:
        config = dataclasses.replace(config, realtime=realtime)

    comp = Composition(
        config,
        manifest["entries"],
        manifest["captions"],
        soundtrack=manifest["soundtrack"],
        source_audio=manifest["source_audio"],
    )
    w, h = config.size
    print(
        f"Rendering {len(comp.timeline)} segments, "
        f"{config.total_duration_seconds:.1f}s at {w}x{h} {config.fps}fps",
        flush=True,
    )

    t_start = time.monotonic()
    session = comp.start(on_progress=_progress_printer())
    output = asyncio.run(session.run())

    for warning in session.warnings:
        print(f"  WARN   {warning}", flush=True)
    written = output.write(output_path)
    elapsed = time.monotonic() - t_start
    status = " (cancelled, partial)" if session.cancelled else ""
    print(
        f"\nDone: {written}{status}: {output.frame_count} frames, "
        f"{output.duration:.2f}s, {output.video_codec}/{output.extension}, "
        f"{elapsed:.1f}s wall",
        flush=True,
    )
    return written


# ── CLI entry points ──────────────────────────────────────────────


def main(args=None):
    parser = argparse.ArgumentParser(
        description="Render a YAML export manifest to an encoded video.",
    )
    parser.add_argument(
        "--manifest", required=True,
        help="Path to YAML export manifest",
    )
    parser.add_argument(
        "--output",
        help="Output path; the extension follows the negotiated container",
    )
    parser.add_argument(
        "--validate", action="store_true",
        help="Validate manifest only: check paths, don't render",
    )
    parser.add_argument(
        "--no-realtime", action="store_true",
        help="Render as fast as possible instead of pacing to wall clock",
    )
    parser.add_argument(
        "--verbose", action="store_true",
        help="Debug logging (encoder commands, state changes)",
    )
    args = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.validate:
        manifest = load_export_manifest(args.manifest)
        validate_manifest_paths(manifest)
        config = manifest["config"]
        w, h = config.size
        print(
            f"Manifest valid: {len(manifest['entries'])} timeline entries, "
            f"{len(manifest['captions'])} captions"
        )
        print(f"  Output: {w}x{h}, {config.fps}fps, {config.total_duration_seconds:.1f}s")
        for i, entry in enumerate(manifest["entries"]):
            transition = entry.transition or config.transition_policy.value
            print(f"  {i}: {entry.source} [{transition}]")
        print("All paths verified.")
        return

    if not args.output:
        parser.error("--output is required (unless using --validate)")

    render_manifest(args.manifest, args.output, realtime=not args.no_realtime)


def encoders_main(args=None):
    parser = argparse.ArgumentParser(
        description="List candidate (codec, container) pairs and local support.",
    )
    parser.parse_args(args)

    exe = ffmpeg_exe()
    available = supported_encoders(exe)
    print(f"ffmpeg: {exe}")
    for candidate in ENCODER_CANDIDATES:
        ok = candidate.video_codec in available and candidate.audio_codec in available
        print(f"  {'OK  ' if ok else 'MISS'}  {candidate.label}")
    try:
        chosen = select_candidate(available)
    except EncoderUnsupported as exc:
        print(f"Selected: none ({exc})")
        return
    print(f"Selected: {chosen.label}")


if __name__ == "__main__":
    main()
