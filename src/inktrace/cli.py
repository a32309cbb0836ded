"""
Command-line interface for inktrace.

Provides commands for vectorizing an image and writing a default config.
"""

import argparse
import os
import sys

from inktrace.config import config_from_options, load_config, save_default_config
from inktrace.errors import DecodeError
from inktrace.presets import CONTENT_TYPES, QUALITY_PRESETS, apply_preset, detect_content_type
from inktrace.tracer import configure_tracer, get_tracer


def main(argv=None):
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="inktrace: convert raster artwork into limited-color SVG separations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Vectorize one image")
    run_parser.add_argument(
        "--input", "-i",
        required=True,
        help="Input image file",
    )
    run_parser.add_argument(
        "--out", "-o",
        required=True,
        help="Output SVG file",
    )
    run_parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to YAML configuration file",
    )
    run_parser.add_argument(
        "--quality",
        choices=sorted(QUALITY_PRESETS),
        default=None,
        help="Quality preset",
    )
    run_parser.add_argument(
        "--content-type",
        choices=sorted(CONTENT_TYPES) + ["auto"],
        default=None,
        help="Content-type preset, or 'auto' to detect it from the image",
    )
    run_parser.add_argument(
        "--max-colors",
        type=int,
        default=None,
        help="Maximum number of ink colors",
    )
    run_parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for palette clustering",
    )
    run_parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker threads for per-color processing (1 runs inline)",
    )
    run_parser.add_argument(
        "--debug-dir",
        default=None,
        help="Write debug artifacts under this directory",
    )
    run_parser.add_argument(
        "--report",
        default=None,
        help="Write validation report files to this directory",
    )
    run_parser.add_argument(
        "--trace",
        action="store_true",
        help="Enable runtime tracing",
    )
    run_parser.add_argument(
        "--trace-level",
        default="INFO",
        choices=["ERROR", "WARN", "INFO", "DEBUG"],
        help="Trace log level",
    )
    run_parser.add_argument(
        "--trace-file",
        default=None,
        help="Path to write trace logs",
    )
    run_parser.add_argument(
        "--trace-json",
        action="store_true",
        help="Output trace logs in JSON format",
    )

    # Init config command
    init_parser = subparsers.add_parser("init-config", help="Create default config file")
    init_parser.add_argument(
        "--out", "-o",
        default="inktrace_config.yaml",
        help="Output path for config file",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "run":
        return handle_run(args)
    elif args.command == "init-config":
        return handle_init_config(args)

    return 0


def _resolve_config(args):
    """Config from file, then presets, then explicit flags."""
    config = load_config(args.config)

    options = {}
    if args.quality:
        options["quality"] = args.quality
    if args.content_type and args.content_type != "auto":
        options["contentType"] = args.content_type
    if args.max_colors is not None:
        options["maxColors"] = args.max_colors
    if args.seed is not None:
        options["seed"] = args.seed

    config = config_from_options(options, base=config)
    if args.workers is not None:
        config.workers.max_workers = args.workers
    if args.debug_dir:
        config.debug.enabled = True
        config.debug.out_dir = args.debug_dir
    return config


def handle_run(args):
    """Handle the run command."""
    configure_tracer(
        enabled=args.trace,
        level=args.trace_level,
        file_path=args.trace_file,
        json_output=args.trace_json,
    )

    tracer = get_tracer()

    try:
        from inktrace.io.pixel_source import load_pixel_buffer
        from inktrace.io.save_artifacts import DebugArtifactWriter
        from inktrace.pipeline import vectorize, write_document
        from inktrace.validate.report import generate_report

        with tracer.span("cli_run", module="cli"):
            config = _resolve_config(args)
            buffer = load_pixel_buffer(args.input, max_edge=config.source.max_edge)

            if args.content_type == "auto":
                content_type = detect_content_type(buffer)
                config = apply_preset(config, content_type=content_type)
                if args.max_colors is not None:
                    config = config_from_options({"maxColors": args.max_colors}, base=config)

            debug_writer = None
            if config.debug.enabled and config.debug.out_dir:
                run_id = os.path.splitext(os.path.basename(args.input))[0]
                debug_writer = DebugArtifactWriter(
                    config.debug.out_dir, run_id,
                    max_edge=config.debug.max_edge_scale,
                )

            document = vectorize(buffer, config=config, debug_writer=debug_writer)
            write_document(document, args.out)

            if args.report:
                generate_report(document, args.report, debug_writer)

        print("\nVectorization completed.")
        print(f"  Canvas: {document.width}x{document.height}")
        print(f"  Palette size: {document.palette_size}")
        print(f"  Color groups: {document.layer_count}")
        print(f"  Paths: {document.path_count}")
        print(f"  Bytes: {document.byte_size}")
        print(f"  Fallback mode: {document.fallback_mode}")
        print(f"  Diagnostics: {len(document.diagnostics)}")
        print(f"\nSVG saved to: {args.out}")

        if document.validation.has_errors:
            print(f"\n[!] Validation errors detected: {document.validation.error_count}", file=sys.stderr)
            return 1

        return 0

    except DecodeError as e:
        tracer.event(f"Decode failed: {str(e)}", level="ERROR")
        print(f"\nError: cannot decode input: {str(e)}", file=sys.stderr)
        return 2
    except Exception as e:
        tracer.event(f"Pipeline failed: {str(e)}", level="ERROR")
        print(f"\nError: {str(e)}", file=sys.stderr)
        return 1


def handle_init_config(args):
    """Handle the init-config command."""
    save_default_config(args.out)
    print(f"Default configuration saved to: {args.out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
